from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import DefaultDict, Dict, Iterable, List, Optional, Tuple

from ..db.base import BaseDBManager
from ..errors import NotFoundError
from ..logging.ledger_logger import LedgerLogger
from ..models.items import ItemKind, MonetizableItemBase
from ..models.results import ReconciliationReport
from ..models.transaction import Transaction, TransactionKind
from .catalog_service import CatalogService
from .retry import ConflictRetryPolicy


logger = logging.getLogger(__name__)


def expected_counters(
    item: MonetizableItemBase, transactions: Iterable[Transaction]
) -> Dict[str, int]:
    """Counter values implied by the item's non-voided transactions."""
    live = [t for t in transactions if not t.voided]
    tips = [t for t in live if t.kind == TransactionKind.TIP]
    subscriptions = [t for t in live if t.kind == TransactionKind.SUBSCRIPTION]

    derived = {
        "tips_count": len(tips),
        "tips_total_amount": sum(t.amount for t in tips),
        "members_count": len(subscriptions),
    }
    return {name: derived[name] for name in item.counter_fields}


class ReconciliationService:
    """
    Repairs aggregate counters from the transactions they are derived from.

    Operations commit atomically, so counters only diverge through writes
    made outside this library or by backends without multi-document
    transactions. Reconciliation brings them back in line.

    The snapshot and the repair share one store transaction, and repairs of
    the same item are serialized in-process, so a drift is removed once.
    """

    def __init__(
        self,
        db: BaseDBManager,
        ledger: LedgerLogger,
        catalog: Optional[CatalogService] = None,
        retry_policy: Optional[ConflictRetryPolicy] = None,
    ) -> None:
        self._db = db
        self._ledger = ledger
        self._catalog = catalog
        self._retry = retry_policy or ConflictRetryPolicy()
        self._locks: DefaultDict[Tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    async def check_item(self, kind: ItemKind, item_id: str) -> ReconciliationReport:
        snapshot = await self._db.get_item_snapshot(kind, item_id)
        if snapshot is None:
            raise NotFoundError(ItemKind(kind).value, item_id)
        item, transactions = snapshot
        return ReconciliationReport(
            item_kind=item.item_kind.value,
            item_id=item_id,
            observed=item.counters(),
            expected=expected_counters(item, transactions),
        )

    async def reconcile_item(
        self, kind: ItemKind, item_id: str, correlation_id: str | None = None
    ) -> ReconciliationReport:
        async with self._locks[(ItemKind(kind).value, item_id)]:
            report = await self._retry.run(lambda: self._repair(kind, item_id))

        if report.repaired:
            logger.warning(
                "Repaired diverged counters",
                extra={"item_kind": report.item_kind, "item_id": item_id},
            )
            if self._catalog is not None:
                await self._catalog.invalidate(kind, item_id)
            try:
                await self._ledger.log_system(
                    message="Counters reconciled",
                    details={
                        "item_kind": report.item_kind,
                        "item_id": item_id,
                        "observed": report.observed,
                        "expected": report.expected,
                    },
                    correlation_id=correlation_id,
                )
            except Exception:
                logger.exception("Failed to audit counter repair")
        return report

    async def reconcile_all(self) -> List[ReconciliationReport]:
        reports: List[ReconciliationReport] = []
        for kind in ItemKind:
            for item in await self._db.list_items(kind):
                if item.counter_fields and item.id is not None:
                    reports.append(await self.reconcile_item(kind, item.id))
        return reports

    async def _repair(self, kind: ItemKind, item_id: str) -> ReconciliationReport:
        async with self._db.transaction():
            report = await self.check_item(kind, item_id)
            if report.diverged:
                # A commit after the snapshot adds its transaction and its
                # increment together, so the snapshot's drift is still the
                # drift to remove
                deltas = {
                    name: report.expected[name] - report.observed.get(name, 0)
                    for name in report.expected
                }
                await self._db.increment_item_counters(kind, item_id, deltas)
                report.repaired = True
        return report
