"""
Example: the ledger API with a few demo items seeded into the in-memory store.

- Send the session account in X-Account-Id (e.g. "alice").
- Register a payment method before purchasing:
    POST /ledger/payment-methods {"brand": "visa", "last4": "4242"}
- Tip the demo article:
    POST /ledger/items/article/<id>/tips {"amount": 100}

Run:
  uvicorn examples.ledger_demo_app:app --reload
"""

from __future__ import annotations

import asyncio

from creator_ledger.api.app import build_stack, create_app
from creator_ledger.config import get_settings
from creator_ledger.db.memory import InMemoryDBManager
from creator_ledger.models.items import Article, Community, CreatorTier, Post


async def _seed(stack) -> None:
    await stack.catalog.add_item(
        Article(title="Pricing your first course", slug="pricing", author_id="maya", price=499)
    )
    await stack.catalog.add_item(Article(title="Welcome", slug="welcome", author_id="maya"))
    await stack.catalog.add_item(Post(title="Behind the scenes", creator_id="maya"))
    await stack.catalog.add_item(
        Community(name="Indie Makers", slug="indie-makers", owner_id="maya", monthly_price=900)
    )
    await stack.catalog.add_item(
        CreatorTier(name="Supporter", creator_id="maya", monthly_price=300, perks=["Early access"])
    )


settings = get_settings()
stack = build_stack(settings, db=InMemoryDBManager())
asyncio.run(_seed(stack))
app = create_app(stack=stack, settings=settings)
