"""Rate limit port — a counter shared by every instance of the service."""

from __future__ import annotations

from typing import Protocol

from smartcal.data.db import RateLimitResult


class RateLimitPort(Protocol):
    def hit(self, key: str) -> RateLimitResult: ...
