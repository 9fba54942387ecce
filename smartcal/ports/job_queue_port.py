"""Job queue and digest ledger ports.

`claim_next` must be atomic in the backing store: only one caller may
receive a given pending job. `mark_delivered` must reject duplicates.
"""

from __future__ import annotations

from typing import Protocol

from smartcal.data.models import CronJob


class JobQueuePort(Protocol):
    def claim_next(self) -> CronJob | None: ...

    def complete(self, job_id: int, result: dict) -> None: ...

    def fail(self, job_id: int, error: str) -> None: ...

    def enqueue(self, job_type: str) -> CronJob | None: ...


class DigestLedgerPort(Protocol):
    def load_delivered(self, day: str) -> set[int]: ...

    def is_delivered(self, user_id: int, day: str) -> bool: ...

    def mark_delivered(self, user_id: int, day: str, channels: list[str]) -> bool: ...
