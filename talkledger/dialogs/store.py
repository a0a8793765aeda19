import secrets
import threading
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Protocol

from loguru import logger

from talkledger.models.schemas import DialogState, PendingAiAction


class SessionStore(Protocol):
    def get(self, user_id: str, kind: str) -> DialogState | None: ...
    def set(self, state: DialogState) -> None: ...
    def delete(self, user_id: str, kind: str) -> None: ...
    def active(self, user_id: str) -> list[DialogState]: ...


class InMemorySessionStore:
    """Dialog states keyed by (user_id, kind). Stale states read as absent when a timeout is set."""

    def __init__(self, idle_timeout_seconds: float | None = None, clock: Callable[[], datetime] = datetime.now):
        self.idle_timeout_seconds = idle_timeout_seconds
        self.clock = clock
        self._states: dict[tuple[str, str], DialogState] = {}
        self._lock = threading.Lock()

    def _expired(self, state: DialogState) -> bool:
        if self.idle_timeout_seconds is None:
            return False
        return self.clock() - state.updated_at > timedelta(seconds=self.idle_timeout_seconds)

    def get(self, user_id: str, kind: str) -> DialogState | None:
        with self._lock:
            state = self._states.get((user_id, kind))
            if state is not None and self._expired(state):
                logger.info("Dialog {} for {} expired", kind, user_id)
                del self._states[(user_id, kind)]
                return None
            return state

    def set(self, state: DialogState) -> None:
        state.updated_at = self.clock()
        with self._lock:
            self._states[(state.user_id, state.kind)] = state

    def delete(self, user_id: str, kind: str) -> None:
        with self._lock:
            self._states.pop((user_id, kind), None)

    def active(self, user_id: str) -> list[DialogState]:
        """The user's live dialogs, most recently touched first."""
        with self._lock:
            keys = [key for key in self._states if key[0] == user_id]
            live = []
            for key in keys:
                state = self._states[key]
                if self._expired(state):
                    del self._states[key]
                else:
                    live.append(state)
        return sorted(live, key=lambda s: s.updated_at, reverse=True)


class PendingActionStore:
    """AI-proposed writes waiting for the user's confirm; each is taken at most once."""

    def __init__(self):
        self._actions: dict[str, PendingAiAction] = {}
        self._lock = threading.Lock()

    def put(self, user_id: str, kind: str, payload: dict[str, Any]) -> PendingAiAction:
        action = PendingAiAction(action_id=secrets.token_urlsafe(8), user_id=user_id, kind=kind, payload=payload)
        with self._lock:
            self._actions[action.action_id] = action
        return action

    def peek(self, action_id: str) -> PendingAiAction | None:
        with self._lock:
            return self._actions.get(action_id)

    def take(self, action_id: str, user_id: str) -> PendingAiAction | None:
        """Remove and return the action; None if already taken or owned by someone else."""
        with self._lock:
            action = self._actions.get(action_id)
            if action is None or action.user_id != user_id:
                return None
            return self._actions.pop(action_id)

    def restore(self, action: PendingAiAction) -> None:
        """Put back an action whose execution failed in the store, so it can be retried."""
        with self._lock:
            self._actions.setdefault(action.action_id, action)
