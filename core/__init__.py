"""
Audiobook companion core.

Session and resource resolution against a Plex media service, and the
reading/download state of books, coordinated through a single AppState.
"""
from .app_state import AppState, ChangeEvent, build_app_state
from .results import OperationResult, Outcome

__all__ = [
    'AppState',
    'ChangeEvent',
    'OperationResult',
    'Outcome',
    'build_app_state',
]
