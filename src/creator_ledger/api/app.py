from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI

from ..cache.memory import InMemoryAsyncCache
from ..config import Settings, get_settings
from ..db.base import BaseDBManager
from ..db.memory import InMemoryDBManager
from ..db.mongo import MongoDBManager
from ..logging.ledger_logger import LedgerLogger
from ..logging.setup import setup_logging
from ..notifications.queue import InMemoryNotificationQueue
from ..services.catalog_service import CatalogService
from ..services.ledger_service import LedgerService
from ..services.notification_service import NotificationService
from ..services.payment_service import PaymentService
from ..services.reconciliation_service import ReconciliationService
from ..services.retry import ConflictRetryPolicy
from .error_handlers import register_error_handlers
from .middleware import AccountContextMiddleware
from .router import router


logger = logging.getLogger(__name__)


def create_db_manager(settings: Settings) -> BaseDBManager:
    if settings.mongo_uri:
        return MongoDBManager.from_client_uri(settings.mongo_uri, settings.mongo_db)
    logger.info("No LEDGER_MONGO_URI configured, using the in-memory store")
    return InMemoryDBManager()


@dataclass
class LedgerStack:
    db: BaseDBManager
    ledger_logger: LedgerLogger
    catalog: CatalogService
    payments: PaymentService
    notifications: NotificationService
    queue: InMemoryNotificationQueue
    ledger: LedgerService
    reconciliation: ReconciliationService


def build_stack(
    settings: Optional[Settings] = None, db: Optional[BaseDBManager] = None
) -> LedgerStack:
    settings = settings or get_settings()
    db = db or create_db_manager(settings)
    cache = InMemoryAsyncCache(default_ttl_seconds=settings.item_cache_ttl_seconds)
    ledger_logger = LedgerLogger(db=db, file_path=settings.ledger_log_path)
    catalog = CatalogService(db=db, cache=cache, cache_ttl_seconds=settings.item_cache_ttl_seconds)
    payments = PaymentService(db=db)
    queue = InMemoryNotificationQueue()
    notifications = NotificationService(db=db, queue=queue)
    retry_policy = ConflictRetryPolicy(
        max_attempts=settings.conflict_max_attempts,
        base_delay_ms=settings.conflict_base_delay_ms,
        max_delay_ms=settings.conflict_max_delay_ms,
    )
    ledger = LedgerService(
        db=db,
        ledger=ledger_logger,
        catalog=catalog,
        payments=payments,
        notifications=notifications,
        retry_policy=retry_policy,
        min_tip_amount=settings.min_tip_amount,
        trial_days=settings.trial_days,
        period_days=settings.period_days,
        currency=settings.currency,
    )
    reconciliation = ReconciliationService(
        db=db, ledger=ledger_logger, catalog=catalog, retry_policy=retry_policy
    )
    return LedgerStack(
        db=db,
        ledger_logger=ledger_logger,
        catalog=catalog,
        payments=payments,
        notifications=notifications,
        queue=queue,
        ledger=ledger,
        reconciliation=reconciliation,
    )


def create_app(
    stack: Optional[LedgerStack] = None, settings: Optional[Settings] = None
) -> FastAPI:
    settings = settings or get_settings()
    stack = stack or build_stack(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup/shutdown lifecycle."""
        setup_logging(settings.log_level, settings.log_format)
        if isinstance(stack.db, MongoDBManager):
            await stack.db.ensure_indexes()
        logger.info("Creator ledger started")
        yield
        logger.info("Creator ledger shutting down")

    app = FastAPI(title="Creator ledger", lifespan=lifespan)
    app.state.ledger = stack
    app.add_middleware(
        AccountContextMiddleware,
        account_header=settings.account_header,
        path_prefix="/ledger",
    )
    register_error_handlers(app)
    app.include_router(router)
    return app
