from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import pytest

from creator_ledger.api.app import LedgerStack, build_stack
from creator_ledger.config import Settings
from creator_ledger.db.base import BaseDBManager
from creator_ledger.db.memory import InMemoryDBManager


class SteppingClock:
    """Strictly increasing time, one second per call."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.start = start or datetime(2026, 1, 1, tzinfo=timezone.utc)
        self.calls = 0

    def __call__(self) -> datetime:
        now = self.start + timedelta(seconds=self.calls)
        self.calls += 1
        return now


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        mongo_uri=None,
        ledger_log_path=tmp_path / "ledger.jsonl",
        conflict_base_delay_ms=0,
        conflict_max_delay_ms=0,
    )


@pytest.fixture
def stack_factory(settings, clock) -> Callable[..., LedgerStack]:
    def factory(db: Optional[BaseDBManager] = None) -> LedgerStack:
        stack = build_stack(settings, db=db or InMemoryDBManager())
        stack.ledger._clock = clock
        return stack

    return factory


@pytest.fixture
def stack(stack_factory) -> LedgerStack:
    return stack_factory()
