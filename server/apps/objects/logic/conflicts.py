"""Naming-collision resolution for uploads, copies and renames.

A collision is not an error: resolution pauses for a decision from the
conflict port (a user prompt or a fixed policy), then either keeps the
name, drops the item, or picks the next free ``base_N.ext`` name.
"""

import logging
import queue
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Final, final

from server.apps.objects.infrastructure.paths import split_extension
from server.apps.objects.logic.types import (
    FOLDER_SUFFIX,
    ConflictAction,
    ConflictDecision,
    ConflictPort,
)

logger = logging.getLogger(__name__)

# First counter tried when renaming
_FIRST_COUNTER: Final = 1


@dataclass(frozen=True, slots=True)
class Resolution:
    """Outcome of resolving one candidate name.

    ``final_name`` is None when the item is skipped. ``decision`` is None
    when the candidate did not collide with anything.
    """

    final_name: str | None
    decision: ConflictDecision | None = None

    @property
    def skipped(self) -> bool:
        """Whether the item is excluded from the operation."""
        return self.final_name is None


def split_candidate(candidate_name: str) -> tuple[str, str]:
    """Split a relative upload path into its first segment and the rest.

    Example: 'photos/2024/a.jpg' -> ('photos', '2024/a.jpg').

    Args:
        candidate_name: File name or relative path.

    Returns:
        Tuple of top-level segment and remainder ('' if none).
    """
    top_level, _, remainder = candidate_name.partition(FOLDER_SUFFIX)
    return top_level, remainder


def next_available_name(name: str, claimed_names: Iterable[str]) -> str:
    """Find the first ``base_N.ext`` variant of a name not yet claimed.

    Example: 'a.txt' with {'a.txt', 'a_1.txt'} claimed -> 'a_2.txt'.

    Args:
        name: Single path segment that is already taken.
        claimed_names: Names that cannot be used.

    Returns:
        Unclaimed variant of the name.
    """
    claimed = set(claimed_names)
    base, extension = split_extension(name)
    counter = _FIRST_COUNTER
    while True:
        candidate = f'{base}_{counter}{extension}'
        if candidate not in claimed:
            return candidate
        counter += 1


def resolve_conflict(  # noqa: WPS211
    candidate_name: str,
    claimed_names: set[str],
    prior_sticky_decision: ConflictDecision | None,
    port: ConflictPort,
    is_batch: bool = False,
) -> Resolution:
    """Resolve one candidate name against the names already claimed.

    The collision check runs on the top-level segment, so a folder
    upload ('photos/a.jpg') collides with an existing 'photos' folder.
    Whatever name comes out is added to ``claimed_names`` immediately,
    so later items of the same batch see it as taken.

    Args:
        candidate_name: File name or relative path to place.
        claimed_names: Names taken at the destination; mutated in place.
        prior_sticky_decision: Decision an earlier item asked to apply to
            the rest of the batch.
        port: Asked for a decision when there is no sticky one.
        is_batch: Whether the prompt may offer "apply to all".

    Returns:
        Resolution with the final name (None when skipped).
    """
    top_level, remainder = split_candidate(candidate_name)
    if top_level not in claimed_names:
        claimed_names.add(top_level)
        return Resolution(final_name=candidate_name)

    decision = prior_sticky_decision or port(top_level, is_batch)
    logger.debug(
        'Name conflict on %s resolved with %s',
        top_level,
        decision.action,
    )

    if decision.action == ConflictAction.SKIP:
        return Resolution(final_name=None, decision=decision)

    if decision.action == ConflictAction.OVERWRITE:
        return Resolution(final_name=candidate_name, decision=decision)

    renamed = next_available_name(top_level, claimed_names)
    claimed_names.add(renamed)
    if remainder:
        renamed = f'{renamed}{FOLDER_SUFFIX}{remainder}'
    return Resolution(final_name=renamed, decision=decision)


@final
class ConflictResolver:
    """Resolves names for one batch, remembering sticky decisions.

    Example: destination holds 'report.txt'; two uploads named
    'report.txt' with rename + apply-to-all on the first conflict end up
    as 'report_1.txt' and 'report_2.txt'. Files of one uploaded folder
    are resolved once, on the folder name, and stay together.
    """

    def __init__(
        self,
        claimed_names: Iterable[str],
        port: ConflictPort,
        is_batch: bool = False,
    ) -> None:
        """Initialize resolver for one batch.

        Args:
            claimed_names: Names already present at the destination.
            port: Source of decisions for collisions.
            is_batch: Whether more than one item is being placed.
        """
        self._claimed = set(claimed_names)
        self._port = port
        self._is_batch = is_batch
        self._sticky: ConflictDecision | None = None
        # Folder uploads: original top-level folder -> placed name
        self._folders: dict[str, str | None] = {}

    @property
    def claimed_names(self) -> frozenset[str]:
        """Names taken so far, including those claimed by this batch."""
        return frozenset(self._claimed)

    @property
    def sticky_decision(self) -> ConflictDecision | None:
        """Decision applied to the remaining collisions, if any."""
        return self._sticky

    def resolve(self, candidate_name: str) -> Resolution:
        """Resolve a candidate, applying or recording a sticky decision.

        Args:
            candidate_name: File name or relative path to place.

        Returns:
            Resolution with the final name (None when skipped).
        """
        top_level, remainder = split_candidate(candidate_name)
        if remainder and top_level in self._folders:
            # Later files of a folder already placed by this batch
            mapped = self._folders[top_level]
            if mapped is None:
                return Resolution(final_name=None)
            return Resolution(final_name=f'{mapped}{FOLDER_SUFFIX}{remainder}')

        resolution = resolve_conflict(
            candidate_name,
            self._claimed,
            self._sticky,
            self._port,
            self._is_batch,
        )
        decision = resolution.decision
        if self._sticky is None and decision and decision.sticky_for_batch:
            self._sticky = decision
        if remainder:
            final_name = resolution.final_name
            self._folders[top_level] = (
                None if final_name is None else split_candidate(final_name)[0]
            )
        return resolution


@final
class PolicyConflictPort:
    """Non-interactive port answering every collision the same way."""

    def __init__(self, action: ConflictAction) -> None:
        """Initialize with a fixed action.

        Args:
            action: Action applied to every collision.
        """
        self._decision = ConflictDecision(action=action, sticky_for_batch=True)

    def __call__(self, candidate_name: str, is_batch: bool) -> ConflictDecision:
        """Return the fixed decision."""
        return self._decision


@dataclass(frozen=True, slots=True)
class ConflictQuestion:
    """A pending collision waiting for an answer.

    Each question carries its own reply slot, so an answer can only ever
    reach the collision it was given for.
    """

    candidate_name: str
    is_batch: bool
    reply: queue.Queue[ConflictDecision] = field(
        default_factory=lambda: queue.Queue(maxsize=1),
        compare=False,
        repr=False,
    )
    expired: threading.Event = field(
        default_factory=threading.Event,
        compare=False,
        repr=False,
    )


@final
class QueueConflictPort:
    """Interactive port: the worker blocks until the UI answers.

    The operation thread calls the port and waits; the presentation
    thread picks the question with ``next_question`` and replies with
    ``answer``. An unanswered question skips the item after the timeout
    and later answers to it are dropped.
    """

    def __init__(self, timeout: float | None = None) -> None:
        """Initialize the port.

        Args:
            timeout: Seconds to wait for an answer, None waits forever.
        """
        self._timeout = timeout
        self._questions: queue.Queue[ConflictQuestion] = queue.Queue()
        self._lock = threading.Lock()

    def __call__(self, candidate_name: str, is_batch: bool) -> ConflictDecision:
        """Publish the question and block until it is answered."""
        question = ConflictQuestion(candidate_name, is_batch)
        self._questions.put(question)
        try:
            return question.reply.get(timeout=self._timeout)
        except queue.Empty:
            with self._lock:
                if not question.reply.empty():
                    return question.reply.get_nowait()
                question.expired.set()
            logger.warning('Conflict prompt for %s timed out, skipping', candidate_name)
            return ConflictDecision(action=ConflictAction.SKIP)

    def next_question(self, timeout: float | None = None) -> ConflictQuestion:
        """Wait for the next collision to answer.

        Questions that timed out meanwhile are discarded.

        Args:
            timeout: Seconds to wait, None waits forever.

        Returns:
            Pending question.

        Raises:
            queue.Empty: If no question arrives in time.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            remaining = None
            if deadline is not None:
                remaining = max(deadline - time.monotonic(), 0)
            question = self._questions.get(timeout=remaining)
            if not question.expired.is_set():
                return question

    def answer(self, question: ConflictQuestion, decision: ConflictDecision) -> bool:
        """Reply to a question.

        Args:
            question: Question returned by ``next_question``.
            decision: User's decision.

        Returns:
            True if the worker was still waiting for this answer.
        """
        with self._lock:
            if question.expired.is_set():
                logger.info('Answer for %s arrived too late', question.candidate_name)
                return False
            try:
                question.reply.put_nowait(decision)
            except queue.Full:
                logger.warning('%s was already answered', question.candidate_name)
                return False
        return True
