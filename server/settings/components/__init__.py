"""Shared helpers for settings components."""

from pathlib import Path

from decouple import AutoConfig

# Project root: the directory holding the ``server`` package
BASE_DIR = Path(__file__).parent.parent.parent.parent

# Environment variables win over values from ``config/.env``
config = AutoConfig(search_path=BASE_DIR.joinpath('config'))
