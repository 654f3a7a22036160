from __future__ import annotations

from typing import Iterable, Optional

from ..db.base import BaseDBManager
from ..errors import NotAuthenticatedError
from ..models.account import PaymentBrand, PaymentMethod


class PaymentService:
    """
    Payment-method registry. The ledger only asks whether an account has a
    usable method; charging is the payment processor's concern.
    """

    def __init__(self, db: BaseDBManager) -> None:
        self._db = db

    async def list_methods(self, account_id: Optional[str]) -> Iterable[PaymentMethod]:
        if not account_id:
            return []
        return await self._db.get_payment_methods(account_id)

    async def add_method(
        self,
        account_id: Optional[str],
        brand: PaymentBrand | str,
        last4: Optional[str] = None,
    ) -> PaymentMethod:
        if not account_id:
            raise NotAuthenticatedError()
        existing = list(await self._db.get_payment_methods(account_id))
        method = PaymentMethod(
            account_id=account_id,
            brand=PaymentBrand(brand),
            last4=last4,
            is_default=not existing,
        )
        return await self._db.add_payment_method(method)

    async def has_usable_method(self, account_id: str) -> bool:
        methods = await self._db.get_payment_methods(account_id)
        return any(True for _ in methods)
