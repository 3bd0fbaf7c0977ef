import threading
from contextlib import contextmanager
from typing import Hashable, Iterator


class ActionGuard:
    """Tracks which (actor, entity) actions are currently in flight.

    A second attempt for a key that is already held is refused instead of
    queued. Keys are released on both success and failure.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_flight: set[Hashable] = set()

    def acquire(self, key: Hashable) -> bool:
        with self._lock:
            if key in self._in_flight:
                return False
            self._in_flight.add(key)
            return True

    def release(self, key: Hashable) -> None:
        with self._lock:
            self._in_flight.discard(key)

    def is_held(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._in_flight

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[bool]:
        acquired = self.acquire(key)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(key)

    def clear(self) -> None:
        with self._lock:
            self._in_flight.clear()


def action_key(actor_id: int, namespace: str, entity_id: int) -> tuple[int, str]:
    return (actor_id, f"{namespace}-{entity_id}")


action_guard = ActionGuard()
