"""Destination folder tree built from a flat container listing.

Folders are implicit in object stores: a folder exists when a marker key
ending in ``/`` exists or when any key has it as an ancestor. The tree is
a pure function of the listing and holds no expand/collapse state.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Final

from django.core.exceptions import ValidationError

from server.apps.objects.infrastructure.paths import (
    get_trash_prefix,
    validate_destination,
)
from server.apps.objects.logic.types import (
    FOLDER_SUFFIX,
    ObjectRef,
    destination_key,
)

ROOT_PATH: Final = ''
ROOT_NAME: Final = 'Root'


@dataclass(slots=True)
class FolderNode:
    """One folder of the destination tree."""

    name: str
    path: str
    children: list['FolderNode'] = field(default_factory=list)

    def walk(self) -> Iterator['FolderNode']:
        """Yield this node and all descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def find(self, path: str) -> 'FolderNode | None':
        """Find a node by its trailing-slash path.

        Args:
            path: Folder path, '' for the root.

        Returns:
            Matching node, or None.
        """
        for node in self.walk():
            if node.path == path:
                return node
        return None


def collect_folder_paths(objects: Iterable[ObjectRef]) -> set[str]:
    """Collect explicit and implicit folder paths.

    Args:
        objects: Flat listing of a container.

    Returns:
        Every folder path, each ending with a slash.
    """
    folders: set[str] = set()
    for obj in objects:
        segments = obj.key.split(FOLDER_SUFFIX)
        # The last segment is the file name, or '' for folder markers
        current = ''
        for segment in segments[:-1]:
            if not segment:
                continue
            current += segment + FOLDER_SUFFIX
            folders.add(current)
    return folders


def build_folder_tree(objects: Iterable[ObjectRef]) -> FolderNode:
    """Build the folder hierarchy of a container.

    Example: keys ['a/', 'a/b/', 'a/b/c.txt', 'd.txt'] give
    Root -> a -> b.

    Args:
        objects: Flat listing of a container.

    Returns:
        Root node (path ''), with children sorted by name at every level.
    """
    root = FolderNode(name=ROOT_NAME, path=ROOT_PATH)
    nodes: dict[str, FolderNode] = {ROOT_PATH: root}

    # Parents sort before their children, so they always exist first
    for path in sorted(collect_folder_paths(objects)):
        trimmed = path.rstrip(FOLDER_SUFFIX)
        parent_path, _, name = trimmed.rpartition(FOLDER_SUFFIX)
        if parent_path:
            parent_path += FOLDER_SUFFIX
        node = FolderNode(name=name, path=path)
        nodes[path] = node
        nodes[parent_path].children.append(node)

    for node in nodes.values():
        node.children.sort(key=lambda child: child.name)

    return root


@dataclass(frozen=True, slots=True)
class DestinationOption:
    """A tree node flattened for display, with its legality."""

    path: str
    name: str
    depth: int
    is_legal: bool
    reason: str = ''


def legal_destinations(
    tree: FolderNode,
    items: Iterable[ObjectRef],
) -> list[DestinationOption]:
    """Flatten the tree and mark which folders can receive the selection.

    A folder is illegal when moving any selected item there would fail
    validation. The trash subtree is never offered. The root is always
    listed and always selectable; moving an item that already lives
    there is still rejected by the engine.

    Args:
        tree: Root returned by build_folder_tree.
        items: Selected objects.

    Returns:
        Options in display order (depth first, sorted by name).
    """
    selection = list(items)
    trash_prefix = get_trash_prefix()
    options: list[DestinationOption] = []

    def visit(node: FolderNode, depth: int) -> None:
        if node.path.startswith(trash_prefix):
            return
        reason = ''
        if node.path != ROOT_PATH:
            reason = _rejection_reason(node.path, selection)
        options.append(DestinationOption(
            path=node.path,
            name=node.name,
            depth=depth,
            is_legal=not reason,
            reason=reason,
        ))
        for child in node.children:
            visit(child, depth + 1)

    visit(tree, 0)
    return options


def _rejection_reason(dest_prefix: str, items: list[ObjectRef]) -> str:
    for item in items:
        try:
            validate_destination(item, destination_key(item, dest_prefix))
        except ValidationError as error:
            return f'{item.name}: {error.messages[0]}'
    return ''
