"""Action stores - persistence port for Actions with optimistic versioning."""

import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from mailpilot.actions.schemas import Action
from mailpilot.common.exceptions import ActionNotFound
from mailpilot.core.types import ActionStatus

logger = logging.getLogger(__name__)


class ActionStore(ABC):
    """Abstract base class for action persistence.

    Every write after ``create`` is a compare-and-set on ``version``: the
    write lands only if the stored version still equals the version the
    caller read, and the stored copy gets ``version + 1``.
    """

    @abstractmethod
    def create(self, action: Action) -> Action:
        """Insert a new action. Raises ValueError if the id already exists."""
        pass

    @abstractmethod
    def get(self, action_id: str) -> Action:
        """Fetch an action. Raises ActionNotFound."""
        pass

    @abstractmethod
    def compare_and_set(self, action: Action, expected_version: int) -> Optional[Action]:
        """Write ``action`` if the stored version is ``expected_version``.

        Returns the stored action, or None when another writer won.
        """
        pass

    @abstractmethod
    def list_actions(self, status: Optional[ActionStatus] = None, limit: Optional[int] = None) -> List[Action]:
        """Actions newest first, optionally filtered by status."""
        pass


class InMemoryActionStore(ActionStore):
    """Thread-safe in-process store with striped per-action locks.

    An action id always maps to the same stripe, so transitions on one action
    are serialised while unrelated actions rarely contend.
    """

    def __init__(self, lock_stripes: int = 64):
        self._actions: Dict[str, Action] = {}
        self._locks: Tuple[threading.Lock, ...] = tuple(threading.Lock() for _ in range(lock_stripes))
        # Guards dict inserts and snapshots only, never held during a transition
        self._index_lock = threading.Lock()

    def _lock_for(self, action_id: str) -> threading.Lock:
        digest = hashlib.blake2b(action_id.encode("utf-8"), digest_size=4).digest()
        return self._locks[int.from_bytes(digest, "big") % len(self._locks)]

    def create(self, action: Action) -> Action:
        with self._lock_for(action.action_id):
            if action.action_id in self._actions:
                raise ValueError(f"Action already exists: {action.action_id}")
            stored = action.model_copy(deep=True)
            with self._index_lock:
                self._actions[action.action_id] = stored
            return stored.model_copy(deep=True)

    def get(self, action_id: str) -> Action:
        with self._lock_for(action_id):
            action = self._actions.get(action_id)
            if action is None:
                raise ActionNotFound(action_id)
            return action.model_copy(deep=True)

    def compare_and_set(self, action: Action, expected_version: int) -> Optional[Action]:
        with self._lock_for(action.action_id):
            current = self._actions.get(action.action_id)
            if current is None:
                raise ActionNotFound(action.action_id)
            if current.version != expected_version:
                logger.debug(
                    "Version conflict",
                    extra={
                        "action_id": action.action_id,
                        "expected_version": expected_version,
                        "stored_version": current.version,
                    },
                )
                return None
            stored = action.model_copy(update={"version": expected_version + 1}, deep=True)
            self._actions[action.action_id] = stored
            return stored.model_copy(deep=True)

    def list_actions(self, status: Optional[ActionStatus] = None, limit: Optional[int] = None) -> List[Action]:
        with self._index_lock:
            snapshot = list(self._actions.values())
        actions = [
            a.model_copy(deep=True) for a in snapshot
            if status is None or a.status == status
        ]
        actions.sort(key=lambda a: a.created_at, reverse=True)
        return actions[:limit] if limit is not None else actions
