from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, ClassVar, Dict, Literal, Optional, Tuple, Union

from pydantic import Field, TypeAdapter

from .base import DBSerializableModel, utcnow


class ItemKind(str, Enum):
    ARTICLE = "article"
    COMMUNITY = "community"
    POST = "post"
    TIER = "tier"


class MonetizableItemBase(DBSerializableModel):
    """
    Shared shape of everything money can be attached to.

    Each variant declares which aggregate counters it carries. Counters are
    derived values: the source of truth is the set of non-voided ledger
    transactions that reference the item.
    """

    counter_fields: ClassVar[Tuple[str, ...]] = ()
    tippable: ClassVar[bool] = False
    subscribable: ClassVar[bool] = False

    id: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def item_kind(self) -> ItemKind:
        return ItemKind(self.kind)  # type: ignore[attr-defined]

    @property
    def display_name(self) -> str:
        raise NotImplementedError

    @property
    def recipient_id(self) -> str:
        """Account that receives the money (author, owner or creator)."""
        raise NotImplementedError

    def counters(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in self.counter_fields}


class Article(MonetizableItemBase):
    collection_name: ClassVar[str] = "ledger_articles"
    counter_fields: ClassVar[Tuple[str, ...]] = ("tips_count",)
    tippable: ClassVar[bool] = True

    kind: Literal["article"] = "article"
    title: str
    slug: str = ""
    author_id: str
    category: Optional[str] = None
    price: int = Field(default=0, ge=0, description="Price in minor currency units.")
    tips_count: int = 0

    @property
    def display_name(self) -> str:
        return self.title

    @property
    def recipient_id(self) -> str:
        return self.author_id

    @property
    def is_free(self) -> bool:
        return self.price == 0


class Community(MonetizableItemBase):
    collection_name: ClassVar[str] = "ledger_communities"
    counter_fields: ClassVar[Tuple[str, ...]] = ("members_count",)
    subscribable: ClassVar[bool] = True

    kind: Literal["community"] = "community"
    name: str
    slug: str = ""
    owner_id: str
    description: Optional[str] = None
    monthly_price: int = Field(default=0, ge=0)
    members_count: int = 0
    is_active: bool = True

    @property
    def display_name(self) -> str:
        return self.name

    @property
    def recipient_id(self) -> str:
        return self.owner_id


class PostFormat(str, Enum):
    ARTICLE = "article"
    VIDEO = "video"


class PostAccess(str, Enum):
    PUBLIC = "public"
    SUPPORTERS = "supporters"


class Post(MonetizableItemBase):
    collection_name: ClassVar[str] = "ledger_posts"
    counter_fields: ClassVar[Tuple[str, ...]] = ("tips_count", "tips_total_amount")
    tippable: ClassVar[bool] = True

    kind: Literal["post"] = "post"
    title: str
    creator_id: str
    format: PostFormat = PostFormat.ARTICLE
    access: PostAccess = PostAccess.PUBLIC
    views: int = Field(default=0, ge=0)
    tips_count: int = 0
    tips_total_amount: int = Field(
        default=0, description="Sum of all tip amounts in minor currency units."
    )

    @property
    def display_name(self) -> str:
        return self.title

    @property
    def recipient_id(self) -> str:
        return self.creator_id


class CreatorTier(MonetizableItemBase):
    """A paid support tier offered by a creator."""

    collection_name: ClassVar[str] = "ledger_creator_tiers"
    counter_fields: ClassVar[Tuple[str, ...]] = ("members_count",)
    subscribable: ClassVar[bool] = True

    kind: Literal["tier"] = "tier"
    name: str
    creator_id: str
    monthly_price: int = Field(default=0, ge=0)
    position: int = 0
    perks: list[str] = Field(default_factory=list)
    active: bool = True
    members_count: int = 0

    @property
    def display_name(self) -> str:
        return self.name

    @property
    def recipient_id(self) -> str:
        return self.creator_id

    @property
    def is_active(self) -> bool:
        return self.active


MonetizableItem = Annotated[
    Union[Article, Community, Post, CreatorTier],
    Field(discriminator="kind"),
]

ITEM_MODELS: Dict[ItemKind, type[MonetizableItemBase]] = {
    ItemKind.ARTICLE: Article,
    ItemKind.COMMUNITY: Community,
    ItemKind.POST: Post,
    ItemKind.TIER: CreatorTier,
}

_item_adapter: TypeAdapter[MonetizableItem] = TypeAdapter(MonetizableItem)


def parse_item(data: Dict) -> MonetizableItemBase:
    """Build the right variant from a stored document using its `kind` tag."""
    return _item_adapter.validate_python(data)


def model_for_kind(kind: ItemKind | str) -> type[MonetizableItemBase]:
    return ITEM_MODELS[ItemKind(kind)]
