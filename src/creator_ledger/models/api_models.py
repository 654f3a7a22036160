from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from .account import PaymentBrand
from .items import PostAccess, PostFormat


ArticleSort = Literal["recent", "most_tipped"]
PriceFilter = Literal["free", "paid"]
FeedOrder = Literal["trending", "latest"]


class TipRequest(BaseModel):
    amount: int = Field(description="Tip amount in minor currency units.")


class SubscribeRequest(BaseModel):
    trial: bool = False


class PaymentMethodRequest(BaseModel):
    brand: PaymentBrand
    last4: Optional[str] = Field(default=None, min_length=4, max_length=4)


class OwnershipResponse(BaseModel):
    article_id: str
    owned: bool


class CommunityView(BaseModel):
    id: str
    name: str
    slug: str
    members_count: int
    monthly_price: int
    joined: bool


class ArticleView(BaseModel):
    id: str
    title: str
    slug: str
    category: Optional[str] = None
    price: int
    tips_count: int
    is_owned: bool


class PostView(BaseModel):
    id: str
    title: str
    creator_id: str
    format: PostFormat
    access: PostAccess
    views: int
    tips_count: int
    tips_total_amount: int
    created_at: datetime
