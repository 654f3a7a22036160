from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query, Request

from ..errors import NotFoundError
from ..models.account import PaymentMethod
from ..models.api_models import (
    ArticleSort,
    ArticleView,
    CommunityView,
    FeedOrder,
    OwnershipResponse,
    PaymentMethodRequest,
    PostView,
    PriceFilter,
    SubscribeRequest,
    TipRequest,
)
from ..models.base import PaginatedResult
from ..models.items import Article, ItemKind, PostFormat
from ..models.results import LedgerResult


router = APIRouter(prefix="/ledger", tags=["ledger"])


def _stack(request: Request) -> Any:
    return request.app.state.ledger


def _account(request: Request) -> Optional[str]:
    return getattr(request.state, "account_id", None)


def _correlation(request: Request) -> Optional[str]:
    return getattr(request.state, "correlation_id", None)


@router.post("/articles/{article_id}/purchase", response_model=LedgerResult)
async def purchase_article(article_id: str, request: Request) -> LedgerResult:
    return await _stack(request).ledger.record_purchase(
        account_id=_account(request),
        article_id=article_id,
        correlation_id=_correlation(request),
    )


@router.post("/items/{item_kind}/{item_id}/tips", response_model=LedgerResult)
async def tip_item(
    item_kind: str, item_id: str, payload: TipRequest, request: Request
) -> LedgerResult:
    return await _stack(request).ledger.record_tip(
        account_id=_account(request),
        item_kind=item_kind,
        item_id=item_id,
        amount=payload.amount,
        correlation_id=_correlation(request),
    )


@router.post("/items/{item_kind}/{item_id}/subscriptions", response_model=LedgerResult)
async def subscribe(
    item_kind: str, item_id: str, payload: SubscribeRequest, request: Request
) -> LedgerResult:
    return await _stack(request).ledger.record_subscription(
        account_id=_account(request),
        target_kind=item_kind,
        target_id=item_id,
        trial=payload.trial,
        correlation_id=_correlation(request),
    )


@router.get("/transactions", response_model=PaginatedResult)
async def list_transactions(
    request: Request,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> PaginatedResult:
    return await _stack(request).ledger.get_history(
        _account(request), limit=limit, offset=offset
    )


@router.get("/items/{item_kind}/{item_id}")
async def get_item(item_kind: str, item_id: str, request: Request) -> Dict[str, Any]:
    item = await _stack(request).catalog.require_item(item_kind, item_id)
    return item.model_dump(mode="json")


@router.get("/articles", response_model=List[ArticleView])
async def list_articles(
    request: Request,
    search: Optional[str] = None,
    category: Optional[str] = None,
    price: Optional[PriceFilter] = None,
    sort: ArticleSort = "recent",
    limit: int = Query(default=12, ge=1, le=100),
) -> List[ArticleView]:
    return await _stack(request).catalog.list_articles(
        _account(request),
        search=search,
        category=category,
        price=price,
        sort=sort,
        limit=limit,
    )


@router.get("/posts", response_model=List[PostView])
async def post_feed(
    request: Request,
    format: Optional[PostFormat] = None,
    order: FeedOrder = "trending",
    limit: int = Query(default=20, ge=1, le=100),
) -> List[PostView]:
    return await _stack(request).catalog.list_posts(post_format=format, order=order, limit=limit)


@router.get("/articles/{article_id}/ownership", response_model=OwnershipResponse)
async def article_ownership(article_id: str, request: Request) -> OwnershipResponse:
    catalog = _stack(request).catalog
    article = await catalog.require_item(ItemKind.ARTICLE, article_id)
    if not isinstance(article, Article):
        raise NotFoundError(ItemKind.ARTICLE.value, article_id)
    owned = await catalog.is_owned(_account(request), article)
    return OwnershipResponse(article_id=article_id, owned=owned)


@router.get("/communities", response_model=List[CommunityView])
async def list_communities(
    request: Request, joined: Optional[bool] = None
) -> List[CommunityView]:
    return await _stack(request).catalog.list_communities(_account(request), joined=joined)


@router.get("/payment-methods", response_model=List[PaymentMethod])
async def list_payment_methods(request: Request) -> List[PaymentMethod]:
    return list(await _stack(request).payments.list_methods(_account(request)))


@router.post("/payment-methods", response_model=PaymentMethod, status_code=201)
async def add_payment_method(
    payload: PaymentMethodRequest, request: Request
) -> PaymentMethod:
    return await _stack(request).payments.add_method(
        _account(request), payload.brand, payload.last4
    )
