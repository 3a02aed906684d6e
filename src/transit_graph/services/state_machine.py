"""
Cache State Machine - explicit lifecycle of one start() session.

Legal transitions within a session:
- (initial) -> MissingFiles | Error | Ready | NeedsImport
- NeedsImport -> Importing | Error
- Importing -> Ready | Error

MissingFiles, Ready and Error are terminal. A new session begins with
begin(); the last state of the previous session stays observable
through `current` until then.
"""

import logging
import threading
from typing import Dict, FrozenSet, Optional

from src.transit_graph.exceptions import InvalidStateTransitionError
from src.transit_graph.schemas.cache_state import CacheState, CacheStateKind

logger = logging.getLogger(__name__)

_INITIAL = "initial"

_TRANSITIONS: Dict[Optional[CacheStateKind], FrozenSet[CacheStateKind]] = {
    None: frozenset(
        {
            CacheStateKind.MISSING_FILES,
            CacheStateKind.ERROR,
            CacheStateKind.READY,
            CacheStateKind.NEEDS_IMPORT,
        }
    ),
    CacheStateKind.NEEDS_IMPORT: frozenset({CacheStateKind.IMPORTING, CacheStateKind.ERROR}),
    CacheStateKind.IMPORTING: frozenset({CacheStateKind.READY, CacheStateKind.ERROR}),
}


class CacheStateMachine:
    """
    Thread-safe validator and holder of the current CacheState.

    Usage:
        >>> machine = CacheStateMachine()
        >>> machine.begin()
        >>> machine.transition(CacheState.needs_import())
        >>> machine.transition(CacheState.importing())
        >>> machine.transition(CacheState.ready()).is_terminal
        True
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._session_kind: Optional[CacheStateKind] = None
        self._current: Optional[CacheState] = None

    @property
    def current(self) -> Optional[CacheState]:
        """Last state entered (None before the first session)."""
        with self._lock:
            return self._current

    def begin(self) -> None:
        """Start a new session from the initial state."""
        with self._lock:
            self._session_kind = None

    def can_transition(self, kind: CacheStateKind) -> bool:
        with self._lock:
            return kind in _TRANSITIONS.get(self._session_kind, frozenset())

    def transition(self, state: CacheState) -> CacheState:
        """
        Enter a new state.

        Args:
            state: State to enter.

        Returns:
            The entered state, for chaining into a yield.

        Raises:
            InvalidStateTransitionError: If the transition is not legal
                from the current session state.
        """
        with self._lock:
            allowed = _TRANSITIONS.get(self._session_kind, frozenset())
            if state.kind not in allowed:
                current = self._session_kind.value if self._session_kind else _INITIAL
                raise InvalidStateTransitionError(current, state.kind.value)
            self._session_kind = state.kind
            self._current = state

        logger.debug("Cache state -> %s", state.kind.value)
        return state
