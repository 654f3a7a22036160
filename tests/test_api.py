from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from creator_ledger.api.app import create_app
from creator_ledger.models.items import Article, Community, Post, PostFormat


ALICE = {"X-Account-Id": "alice"}


def client_for(stack, settings) -> AsyncClient:
    app = create_app(stack=stack, settings=settings)
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_tip_endpoint(stack, settings):
    article = await stack.catalog.add_item(
        Article(title="Deep Work", author_id="a", price=500, tips_count=3)
    )

    async with client_for(stack, settings) as client:
        resp = await client.post(
            f"/ledger/items/article/{article.id}/tips",
            json={"amount": 100},
            headers={**ALICE, "X-Correlation-Id": "req-42"},
        )

    assert resp.status_code == 200
    body = resp.json()
    assert body["outcome"] == "recorded"
    assert body["counters"] == {"tips_count": 4}
    assert body["transaction"]["kind"] == "tip"
    assert resp.headers["X-Correlation-Id"] == "req-42"


@pytest.mark.asyncio
async def test_missing_account_header_is_401(stack, settings):
    post = await stack.catalog.add_item(Post(title="Studio session", creator_id="c"))

    async with client_for(stack, settings) as client:
        resp = await client.post(f"/ledger/items/post/{post.id}/tips", json={"amount": 100})

    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "NOT_AUTHENTICATED"
    assert resp.headers["X-Correlation-Id"]


@pytest.mark.asyncio
async def test_error_statuses(stack, settings):
    article = await stack.catalog.add_item(Article(title="Deep Work", author_id="a", price=500))
    community = await stack.catalog.add_item(Community(name="Night Owls", owner_id="o"))

    async with client_for(stack, settings) as client:
        low_tip = await client.post(
            f"/ledger/items/article/{article.id}/tips", json={"amount": 1}, headers=ALICE
        )
        bad_body = await client.post(
            f"/ledger/items/article/{article.id}/tips", json={"amount": "lots"}, headers=ALICE
        )
        missing = await client.post("/ledger/items/post/999/tips", json={"amount": 10}, headers=ALICE)
        unsupported = await client.post(
            f"/ledger/items/community/{community.id}/tips", json={"amount": 10}, headers=ALICE
        )
        no_card = await client.post(f"/ledger/articles/{article.id}/purchase", headers=ALICE)

    assert (low_tip.status_code, low_tip.json()["error"]["code"]) == (400, "INVALID_AMOUNT")
    assert (bad_body.status_code, bad_body.json()["error"]["code"]) == (400, "VALIDATION_ERROR")
    assert (missing.status_code, missing.json()["error"]["code"]) == (404, "NOT_FOUND")
    assert (unsupported.status_code, unsupported.json()["error"]["code"]) == (
        400,
        "UNSUPPORTED_TARGET",
    )
    assert (no_card.status_code, no_card.json()["error"]["code"]) == (
        402,
        "PAYMENT_METHOD_MISSING",
    )


@pytest.mark.asyncio
async def test_purchase_flow(stack, settings):
    article = await stack.catalog.add_item(Article(title="Deep Work", author_id="a", price=500))

    async with client_for(stack, settings) as client:
        added = await client.post(
            "/ledger/payment-methods", json={"brand": "visa", "last4": "4242"}, headers=ALICE
        )
        first = await client.post(f"/ledger/articles/{article.id}/purchase", headers=ALICE)
        second = await client.post(f"/ledger/articles/{article.id}/purchase", headers=ALICE)
        ownership = await client.get(f"/ledger/articles/{article.id}/ownership", headers=ALICE)
        articles = await client.get("/ledger/articles", headers=ALICE)
        history = await client.get("/ledger/transactions", headers=ALICE)

    assert added.status_code == 201
    assert added.json()["is_default"] is True
    assert first.json()["outcome"] == "recorded"
    assert second.json()["outcome"] == "already_owned"
    assert ownership.json() == {"article_id": article.id, "owned": True}
    assert articles.json()[0]["is_owned"] is True
    assert history.json()["total"] == 1
    assert history.json()["items"][0]["description"] == "Purchased: Deep Work"


@pytest.mark.asyncio
async def test_bad_payment_method_is_400(stack, settings):
    async with client_for(stack, settings) as client:
        resp = await client.post(
            "/ledger/payment-methods", json={"brand": "visa", "last4": "42"}, headers=ALICE
        )
        methods = await client.get("/ledger/payment-methods", headers=ALICE)

    assert resp.status_code == 400
    assert methods.json() == []


@pytest.mark.asyncio
async def test_subscription_and_community_listing(stack, settings):
    owls = await stack.catalog.add_item(Community(name="Night Owls", owner_id="o"))
    larks = await stack.catalog.add_item(
        Community(name="Early Larks", owner_id="o", members_count=5)
    )

    async with client_for(stack, settings) as client:
        resp = await client.post(
            f"/ledger/items/community/{owls.id}/subscriptions",
            json={"trial": True},
            headers=ALICE,
        )
        joined = await client.get("/ledger/communities", params={"joined": "true"}, headers=ALICE)
        everything = await client.get("/ledger/communities", headers=ALICE)
        item = await client.get(f"/ledger/items/community/{owls.id}")

    assert resp.status_code == 200
    assert resp.json()["membership"]["status"] == "trial"
    assert resp.json()["transaction"]["description"] == "Subscribed to: Night Owls (Free Trial)"
    assert [c["id"] for c in joined.json()] == [owls.id]
    assert [c["id"] for c in everything.json()] == [larks.id, owls.id]
    assert item.json()["members_count"] == 1


@pytest.mark.asyncio
async def test_article_and_post_listings(stack, settings):
    await stack.catalog.add_item(Article(title="Deep Work", author_id="a", price=500, tips_count=1))
    await stack.catalog.add_item(Article(title="Field Notes", author_id="a", price=200, tips_count=8))
    await stack.catalog.add_item(Article(title="Free Intro", author_id="a"))
    await stack.catalog.add_item(Post(title="Intro", creator_id="c", views=50))
    await stack.catalog.add_item(
        Post(title="Studio tour", creator_id="c", format=PostFormat.VIDEO, views=10)
    )

    async with client_for(stack, settings) as client:
        paid = await client.get(
            "/ledger/articles", params={"price": "paid", "sort": "most_tipped"}
        )
        searched = await client.get("/ledger/articles", params={"search": "intro"})
        bad_sort = await client.get("/ledger/articles", params={"sort": "cheapest"})
        trending = await client.get("/ledger/posts")
        videos = await client.get("/ledger/posts", params={"format": "video", "order": "latest"})

    assert [a["title"] for a in paid.json()] == ["Field Notes", "Deep Work"]
    assert [a["title"] for a in searched.json()] == ["Free Intro"]
    assert bad_sort.status_code == 400
    assert [p["title"] for p in trending.json()] == ["Intro", "Studio tour"]
    assert [p["title"] for p in videos.json()] == ["Studio tour"]
    assert videos.json()[0]["format"] == "video"
