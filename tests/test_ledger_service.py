from __future__ import annotations

from datetime import timedelta

import pytest

from creator_ledger.errors import (
    InvalidAmountError,
    NotAuthenticatedError,
    NotFoundError,
    PaymentMethodMissingError,
    UnsupportedTargetError,
)
from creator_ledger.models.items import Article, Community, CreatorTier, ItemKind, Post
from creator_ledger.models.ledger import LedgerEventType
from creator_ledger.models.membership import MembershipStatus
from creator_ledger.models.notification import NotificationType
from creator_ledger.models.results import LedgerOutcome
from creator_ledger.models.transaction import TransactionKind


@pytest.mark.asyncio
async def test_tip_increments_article_counter(stack):
    article = await stack.catalog.add_item(
        Article(title="Deep Work", author_id="author-1", price=500, tips_count=3)
    )

    result = await stack.ledger.record_tip("alice", ItemKind.ARTICLE, article.id, 100)

    assert result.outcome == LedgerOutcome.RECORDED
    assert result.counters == {"tips_count": 4}
    assert result.transaction.kind == TransactionKind.TIP
    assert result.transaction.amount == 100
    assert result.transaction.description == "Tipped: Deep Work"
    assert result.transaction.item_id == article.id

    stored = await stack.db.get_item(ItemKind.ARTICLE, article.id)
    assert stored.tips_count == 4


@pytest.mark.asyncio
async def test_tip_on_post_tracks_total_amount(stack):
    post = await stack.catalog.add_item(Post(title="Studio session", creator_id="creator-1"))

    await stack.ledger.record_tip("alice", "post", post.id, 250)
    result = await stack.ledger.record_tip("bob", "post", post.id, 50)

    assert result.counters == {"tips_count": 2, "tips_total_amount": 300}


@pytest.mark.asyncio
async def test_tip_counter_visible_through_catalog_cache(stack):
    article = await stack.catalog.add_item(Article(title="Cached", author_id="a", price=100))
    before = await stack.catalog.get_item(ItemKind.ARTICLE, article.id)
    assert before.tips_count == 0

    await stack.ledger.record_tip("alice", ItemKind.ARTICLE, article.id, 10)

    after = await stack.catalog.get_item(ItemKind.ARTICLE, article.id)
    assert after.tips_count == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [4, 0, -5, 7.5, True])
async def test_tip_below_minimum_rejected(stack, amount):
    article = await stack.catalog.add_item(Article(title="Deep Work", author_id="a", price=500))

    with pytest.raises(InvalidAmountError):
        await stack.ledger.record_tip("alice", ItemKind.ARTICLE, article.id, amount)

    assert await stack.db.count_transactions("alice") == 0
    stored = await stack.db.get_item(ItemKind.ARTICLE, article.id)
    assert stored.tips_count == 0


@pytest.mark.asyncio
async def test_tip_minimum_is_accepted(stack):
    article = await stack.catalog.add_item(Article(title="Deep Work", author_id="a", price=500))

    result = await stack.ledger.record_tip("alice", ItemKind.ARTICLE, article.id, 5)

    assert result.recorded


@pytest.mark.asyncio
async def test_tip_unknown_item(stack):
    with pytest.raises(NotFoundError):
        await stack.ledger.record_tip("alice", ItemKind.POST, "missing", 100)
    with pytest.raises(NotFoundError):
        await stack.ledger.record_tip("alice", "podcast", "1", 100)


@pytest.mark.asyncio
async def test_tip_on_community_is_unsupported(stack):
    community = await stack.catalog.add_item(Community(name="Night Owls", owner_id="o"))

    with pytest.raises(UnsupportedTargetError):
        await stack.ledger.record_tip("alice", ItemKind.COMMUNITY, community.id, 100)

    assert await stack.db.count_transactions("alice") == 0


@pytest.mark.asyncio
async def test_operations_require_an_account(stack):
    article = await stack.catalog.add_item(Article(title="Deep Work", author_id="a", price=500))
    community = await stack.catalog.add_item(Community(name="Night Owls", owner_id="o"))

    with pytest.raises(NotAuthenticatedError):
        await stack.ledger.record_tip(None, ItemKind.ARTICLE, article.id, 100)
    with pytest.raises(NotAuthenticatedError):
        await stack.ledger.record_purchase("", article.id)
    with pytest.raises(NotAuthenticatedError):
        await stack.ledger.record_subscription(None, ItemKind.COMMUNITY, community.id)
    with pytest.raises(NotAuthenticatedError):
        await stack.ledger.get_history(None)

    stored = await stack.db.get_item(ItemKind.COMMUNITY, community.id)
    assert stored.members_count == 0


@pytest.mark.asyncio
async def test_purchase_without_payment_method_writes_nothing(stack):
    article = await stack.catalog.add_item(Article(title="Deep Work", author_id="a", price=500))

    with pytest.raises(PaymentMethodMissingError):
        await stack.ledger.record_purchase("alice", article.id)

    assert await stack.db.count_transactions("alice") == 0
    assert await stack.db.get_ownership("alice", article.id) is None


@pytest.mark.asyncio
async def test_purchase_records_ownership_and_transaction(stack):
    article = await stack.catalog.add_item(Article(title="Deep Work", author_id="a", price=500))
    await stack.payments.add_method("alice", "visa", "4242")

    result = await stack.ledger.record_purchase("alice", article.id)

    assert result.outcome == LedgerOutcome.RECORDED
    assert result.transaction.kind == TransactionKind.PURCHASE
    assert result.transaction.amount == 500
    assert result.transaction.description == "Purchased: Deep Work"
    assert result.ownership.article_id == article.id
    assert await stack.catalog.is_owned("alice", article)


@pytest.mark.asyncio
async def test_repeat_purchase_is_idempotent(stack):
    article = await stack.catalog.add_item(Article(title="Deep Work", author_id="a", price=500))
    await stack.payments.add_method("alice", "visa", "4242")

    first = await stack.ledger.record_purchase("alice", article.id)
    second = await stack.ledger.record_purchase("alice", article.id)

    assert first.outcome == LedgerOutcome.RECORDED
    assert second.outcome == LedgerOutcome.ALREADY_OWNED
    assert second.transaction is None
    assert second.ownership.id == first.ownership.id
    assert await stack.db.count_transactions("alice") == 1


@pytest.mark.asyncio
async def test_free_article_counts_as_owned(stack):
    article = await stack.catalog.add_item(Article(title="Free read", author_id="a", price=0))

    result = await stack.ledger.record_purchase("alice", article.id)

    assert result.outcome == LedgerOutcome.ALREADY_OWNED
    assert result.ownership is None
    assert await stack.db.count_transactions("alice") == 0


@pytest.mark.asyncio
async def test_purchase_unknown_article(stack):
    await stack.payments.add_method("alice", "visa", "4242")
    post = await stack.catalog.add_item(Post(title="Not an article", creator_id="c"))

    with pytest.raises(NotFoundError):
        await stack.ledger.record_purchase("alice", "missing")
    # Ids are per kind; a post id does not name an article
    with pytest.raises(NotFoundError):
        await stack.ledger.record_purchase("alice", post.id)


@pytest.mark.asyncio
async def test_trial_subscription(stack, clock):
    community = await stack.catalog.add_item(
        Community(name="Night Owls", owner_id="o", monthly_price=900, members_count=10)
    )

    result = await stack.ledger.record_subscription(
        "alice", ItemKind.COMMUNITY, community.id, trial=True
    )

    membership = result.membership
    assert result.outcome == LedgerOutcome.RECORDED
    assert membership.status == MembershipStatus.TRIAL
    assert membership.current_period_end == membership.subscribed_at + timedelta(days=7)
    assert membership.trial_ends_at == membership.current_period_end
    assert membership.subscribed_at >= clock.start
    assert result.transaction.kind == TransactionKind.SUBSCRIPTION
    assert result.transaction.amount == 0
    assert result.transaction.description == "Subscribed to: Night Owls (Free Trial)"
    assert result.counters == {"members_count": 11}


@pytest.mark.asyncio
async def test_paid_subscription_to_tier(stack):
    tier = await stack.catalog.add_item(
        CreatorTier(name="Supporter", creator_id="c", monthly_price=300)
    )

    result = await stack.ledger.record_subscription("alice", ItemKind.TIER, tier.id)

    assert result.membership.status == MembershipStatus.ACTIVE
    assert result.membership.trial_ends_at is None
    assert result.membership.current_period_end == (
        result.membership.subscribed_at + timedelta(days=30)
    )
    assert result.transaction.amount == 300
    assert result.transaction.description == "Subscribed to: Supporter"
    assert result.counters == {"members_count": 1}


@pytest.mark.asyncio
async def test_second_subscription_is_idempotent(stack):
    community = await stack.catalog.add_item(Community(name="Night Owls", owner_id="o"))

    first = await stack.ledger.record_subscription("alice", "community", community.id, trial=True)
    second = await stack.ledger.record_subscription("alice", "community", community.id)

    assert second.outcome == LedgerOutcome.ALREADY_SUBSCRIBED
    assert second.transaction is None
    assert second.membership.id == first.membership.id
    assert second.counters == {"members_count": 1}
    assert await stack.db.count_transactions("alice") == 1


@pytest.mark.asyncio
async def test_inactive_or_wrong_targets_rejected(stack):
    community = await stack.catalog.add_item(
        Community(name="Closed", owner_id="o", is_active=False)
    )
    tier = await stack.catalog.add_item(CreatorTier(name="Retired", creator_id="c", active=False))
    article = await stack.catalog.add_item(Article(title="Deep Work", author_id="a", price=500))

    for kind, item_id in [
        (ItemKind.COMMUNITY, community.id),
        (ItemKind.TIER, tier.id),
        (ItemKind.ARTICLE, article.id),
    ]:
        with pytest.raises(UnsupportedTargetError):
            await stack.ledger.record_subscription("alice", kind, item_id)

    assert list(await stack.db.get_memberships("alice")) == []
    assert await stack.db.count_transactions("alice") == 0


@pytest.mark.asyncio
async def test_history_is_newest_first_and_paginated(stack):
    article = await stack.catalog.add_item(Article(title="Deep Work", author_id="a", price=500))
    community = await stack.catalog.add_item(Community(name="Night Owls", owner_id="o"))
    await stack.payments.add_method("alice", "visa", "4242")

    await stack.ledger.record_tip("alice", ItemKind.ARTICLE, article.id, 10)
    await stack.ledger.record_purchase("alice", article.id)
    await stack.ledger.record_subscription("alice", ItemKind.COMMUNITY, community.id, trial=True)
    await stack.ledger.record_tip("bob", ItemKind.ARTICLE, article.id, 20)

    history = await stack.ledger.get_history("alice")
    assert history.total == 3
    assert [t.kind for t in history.items] == [
        TransactionKind.SUBSCRIPTION,
        TransactionKind.PURCHASE,
        TransactionKind.TIP,
    ]

    page = await stack.ledger.get_history("alice", limit=1, offset=1)
    assert page.total == 3
    assert [t.kind for t in page.items] == [TransactionKind.PURCHASE]

    assert (await stack.ledger.get_history("carol")).items == []


@pytest.mark.asyncio
async def test_rejections_are_audited_and_notified(stack):
    article = await stack.catalog.add_item(Article(title="Deep Work", author_id="a", price=500))

    with pytest.raises(InvalidAmountError):
        await stack.ledger.record_tip(
            "alice", ItemKind.ARTICLE, article.id, 1, correlation_id="req-1"
        )

    errors = [e for e in await stack.db.get_ledger_events() if e.event_type == LedgerEventType.ERROR]
    assert len(errors) == 1
    assert errors[0].message == "Tip rejected"
    assert errors[0].account_id == "alice"
    assert errors[0].correlation_id == "req-1"
    assert errors[0].details["code"] == "INVALID_AMOUNT"

    notifications = await stack.db.get_notification_events("alice")
    assert [n.notification_type for n in notifications] == [NotificationType.TRANSACTION_ERROR]


@pytest.mark.asyncio
async def test_recipients_are_notified_after_commit(stack):
    article = await stack.catalog.add_item(
        Article(title="Deep Work", author_id="author-1", price=500)
    )
    tier = await stack.catalog.add_item(CreatorTier(name="Supporter", creator_id="creator-1"))
    await stack.payments.add_method("alice", "visa", "4242")

    await stack.ledger.record_tip("alice", ItemKind.ARTICLE, article.id, 100)
    await stack.ledger.record_purchase("alice", article.id)
    await stack.ledger.record_subscription("alice", ItemKind.TIER, tier.id)

    author_events = await stack.db.get_notification_events("author-1")
    assert [n.notification_type for n in author_events] == [
        NotificationType.TIP_RECEIVED,
        NotificationType.ARTICLE_PURCHASED,
    ]
    assert author_events[0].payload["from_account_id"] == "alice"

    creator_events = await stack.db.get_notification_events("creator-1")
    assert creator_events[0].notification_type == NotificationType.MEMBER_JOINED

    queued = stack.queue.drain()
    assert [m["type"] for m in queued] == ["tip_received", "article_purchased", "member_joined"]


@pytest.mark.asyncio
async def test_successful_operations_are_audited(stack, settings):
    article = await stack.catalog.add_item(Article(title="Deep Work", author_id="a", price=500))

    await stack.ledger.record_tip("alice", ItemKind.ARTICLE, article.id, 100, correlation_id="c-9")

    events = await stack.db.get_ledger_events()
    assert [e.event_type for e in events] == [LedgerEventType.TRANSACTION]
    assert events[0].details["counters"] == {"tips_count": 1}

    lines = settings.ledger_log_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    assert '"c-9"' in lines[0]
