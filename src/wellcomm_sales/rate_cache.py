"""In-memory cache for the BCV exchange rate.

The caller supplies the current time on every call; the cache never reads a
clock of its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Tuple


DEFAULT_RATE_TTL = timedelta(minutes=10)


@dataclass
class RateCache:
    """Holds the last fetched rate and when it was stored."""

    ttl: timedelta = DEFAULT_RATE_TTL
    _value: Optional[Decimal] = None
    _stored_at: Optional[datetime] = None

    def get(self, now: datetime) -> Tuple[Optional[Decimal], bool]:
        """Return ``(value, is_fresh)``; an empty cache gives ``(None, False)``."""

        if self._value is None or self._stored_at is None:
            return None, False
        return self._value, now - self._stored_at < self.ttl

    def set(self, value: Decimal, now: datetime) -> None:
        self._value = Decimal(value)
        self._stored_at = now

    def clear(self) -> None:
        self._value = None
        self._stored_at = None
