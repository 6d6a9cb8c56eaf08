import threading
from typing import List, Sequence

class KeyRing:
    """Fixed, ordered set of API keys with a lock-guarded cursor."""

    def __init__(self, keys: Sequence[str]):
        cleaned = [k.strip() for k in keys if k and k.strip()]
        if not cleaned:
            raise ValueError("KeyRing needs at least one API key")
        self._keys: List[str] = cleaned
        self._index = 0
        self._lock = threading.Lock()

    @classmethod
    def from_csv(cls, value: str) -> "KeyRing":
        return cls(value.split(","))

    def __len__(self) -> int:
        return len(self._keys)

    @property
    def position(self) -> int:
        with self._lock:
            return self._index

    def current(self) -> str:
        with self._lock:
            return self._keys[self._index]

    def next(self) -> str:
        """Advances the cursor (wrapping around) and returns the new current key."""
        with self._lock:
            self._index = (self._index + 1) % len(self._keys)
            return self._keys[self._index]
