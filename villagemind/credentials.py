"""Process-wide oracle credential pool.

Every agent's consultations share one current credential. On a rate limit
the pool rotates to the next configured key, but only once per episode:
``rotate(expected)`` is a compare-and-swap, so when several agents hit the
limit at the same time the first one rotates and the rest simply retry
against whatever key is now current.
"""

from __future__ import annotations

import threading
from typing import Iterable, List, Optional, Sequence

from .config import Config


class CredentialPool:
    """Ordered set of credentials with a guarded current index."""

    def __init__(self, credentials: Iterable[str] = ()) -> None:
        self._credentials: List[str] = [key for key in credentials if key]
        self._index = 0
        self._rotations = 0
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls) -> "CredentialPool":
        return cls(Config.api_keys())

    def __len__(self) -> int:
        return len(self._credentials)

    @property
    def credentials(self) -> Sequence[str]:
        return tuple(self._credentials)

    @property
    def rotations(self) -> int:
        return self._rotations

    def current(self) -> Optional[str]:
        with self._lock:
            if not self._credentials:
                return None
            return self._credentials[self._index]

    def has_alternate(self, tried: Iterable[Optional[str]]) -> bool:
        """Whether some configured credential has not been tried yet."""

        seen = set(tried)
        return any(key not in seen for key in self._credentials)

    def rotate(self, expected: Optional[str]) -> Optional[str]:
        """Advance past ``expected`` if it is still current.

        Returns the credential that is current afterwards. When another caller
        already rotated away from ``expected`` this is a no-op.
        """

        with self._lock:
            if not self._credentials:
                return None
            if self._credentials[self._index] == expected and len(self._credentials) > 1:
                self._index = (self._index + 1) % len(self._credentials)
                self._rotations += 1
            return self._credentials[self._index]


__all__ = ["CredentialPool"]
