from __future__ import annotations

from collections import defaultdict
from typing import DefaultDict, List, Optional

from ..cache.base import AsyncCacheBackend
from ..db.base import BaseDBManager
from ..errors import NotFoundError
from ..models.api_models import (
    ArticleSort,
    ArticleView,
    CommunityView,
    FeedOrder,
    PostView,
    PriceFilter,
)
from ..models.items import Article, Community, ItemKind, MonetizableItemBase, Post, PostFormat


class CatalogService:
    """
    Registration and account-aware views of monetizable items.

    Item lookups are cached; the ledger invalidates an item's entry after
    every committed counter change. A lookup that was already reading when
    the entry got invalidated returns its result without caching it, so a
    stale snapshot never outlives the invalidation.
    """

    def __init__(
        self,
        db: BaseDBManager,
        cache: Optional[AsyncCacheBackend] = None,
        cache_ttl_seconds: int = 300,
    ) -> None:
        self._db = db
        self._cache = cache
        self._cache_ttl = cache_ttl_seconds
        self._generations: DefaultDict[str, int] = defaultdict(int)

    async def add_item(self, item: MonetizableItemBase) -> MonetizableItemBase:
        item = await self._db.add_item(item)
        await self.invalidate(item.item_kind, item.id or "")
        return item

    async def get_item(
        self, kind: ItemKind | str, item_id: str
    ) -> Optional[MonetizableItemBase]:
        try:
            kind = ItemKind(kind)
        except ValueError:
            return None
        if self._cache is not None:
            cache_key = self._item_cache_key(kind, item_id)
            generation = self._generations[cache_key]
            item = await self._cache.get_or_load(
                cache_key,
                lambda: self._db.get_item(kind, item_id),
                ttl_seconds=self._cache_ttl,
                still_valid=lambda: self._generations[cache_key] == generation,
            )
        else:
            item = await self._db.get_item(kind, item_id)
        # Callers may mutate what they get back; the cached copy stays intact
        return item.model_copy(deep=True) if item is not None else None

    async def require_item(self, kind: ItemKind | str, item_id: str) -> MonetizableItemBase:
        item = await self.get_item(kind, item_id)
        if item is None:
            raise NotFoundError(getattr(kind, "value", str(kind)), item_id)
        return item

    async def invalidate(self, kind: ItemKind, item_id: str) -> None:
        if self._cache is not None:
            cache_key = self._item_cache_key(kind, item_id)
            self._generations[cache_key] += 1
            await self._cache.delete(cache_key)

    async def is_owned(self, account_id: Optional[str], article: Article) -> bool:
        if article.is_free:
            return True
        if not account_id or article.id is None:
            return False
        return await self._db.get_ownership(account_id, article.id) is not None

    async def list_articles(
        self,
        account_id: Optional[str] = None,
        search: Optional[str] = None,
        category: Optional[str] = None,
        price: Optional[PriceFilter] = None,
        sort: ArticleSort = "recent",
        limit: int = 12,
    ) -> List[ArticleView]:
        """
        Articles matching every given filter. `search` is a case-insensitive
        title match; category "All" means no category filter.
        """
        articles = [a for a in await self._db.list_items(ItemKind.ARTICLE) if isinstance(a, Article)]
        if search:
            needle = search.lower()
            articles = [a for a in articles if needle in a.title.lower()]
        if category and category != "All":
            articles = [a for a in articles if a.category == category]
        if price == "free":
            articles = [a for a in articles if a.is_free]
        elif price == "paid":
            articles = [a for a in articles if not a.is_free]

        articles.sort(key=lambda a: a.created_at, reverse=True)
        if sort == "most_tipped":
            # Stable sort keeps newest first among equal tip counts
            articles.sort(key=lambda a: a.tips_count, reverse=True)
        articles = articles[:limit]

        owned: set[str] = set()
        if account_id:
            owned = {o.article_id for o in await self._db.get_ownerships(account_id)}
        return [
            ArticleView(
                id=a.id or "",
                title=a.title,
                slug=a.slug,
                category=a.category,
                price=a.price,
                tips_count=a.tips_count,
                is_owned=a.is_free or a.id in owned,
            )
            for a in articles
        ]

    async def list_posts(
        self,
        post_format: Optional[PostFormat] = None,
        order: FeedOrder = "trending",
        limit: int = 20,
    ) -> List[PostView]:
        """Post feed: most viewed first ("trending") or newest first ("latest")."""
        posts = [p for p in await self._db.list_items(ItemKind.POST) if isinstance(p, Post)]
        if post_format is not None:
            posts = [p for p in posts if p.format == PostFormat(post_format)]
        posts.sort(key=lambda p: p.created_at, reverse=True)
        if order == "trending":
            posts.sort(key=lambda p: p.views, reverse=True)
        return [
            PostView(
                id=p.id or "",
                title=p.title,
                creator_id=p.creator_id,
                format=p.format,
                access=p.access,
                views=p.views,
                tips_count=p.tips_count,
                tips_total_amount=p.tips_total_amount,
                created_at=p.created_at,
            )
            for p in posts[:limit]
        ]

    async def list_communities(
        self, account_id: Optional[str] = None, joined: Optional[bool] = None
    ) -> List[CommunityView]:
        communities = [
            c for c in await self._db.list_items(ItemKind.COMMUNITY) if isinstance(c, Community)
        ]
        member_of: set[str] = set()
        if account_id:
            member_of = {
                m.target_id
                for m in await self._db.get_memberships(account_id)
                if m.target_kind == ItemKind.COMMUNITY and m.is_live
            }
        communities.sort(key=lambda c: c.members_count, reverse=True)
        views = [
            CommunityView(
                id=c.id or "",
                name=c.name,
                slug=c.slug,
                members_count=c.members_count,
                monthly_price=c.monthly_price,
                joined=c.id in member_of,
            )
            for c in communities
        ]
        if joined is not None:
            views = [v for v in views if v.joined == joined]
        return views

    @staticmethod
    def _item_cache_key(kind: ItemKind, item_id: str) -> str:
        return f"ledger:item:{ItemKind(kind).value}:{item_id}"
