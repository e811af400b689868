"""Single-writer container for the client state."""

import logging
import threading
from typing import Callable, List

from receiving_sync.client.state import ClientState, reduce

logger = logging.getLogger(__name__)

Listener = Callable[[ClientState], None]


class LocalStore:
    """Serialises every state change through ``dispatch``.

    Reducers are pure, so the lock only guards swapping the snapshot.
    Listeners run after the swap, outside the lock, with the new snapshot.
    """

    def __init__(self, initial: ClientState = None):
        self._state = initial or ClientState()
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []

    @property
    def state(self) -> ClientState:
        return self._state

    def dispatch(self, action) -> ClientState:
        with self._lock:
            self._state = reduce(self._state, action)
            state = self._state
        logger.debug(f"Dispatched {type(action).__name__}")

        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception(f"State listener failed after {type(action).__name__}")
        return state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
