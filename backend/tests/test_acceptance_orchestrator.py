"""Tests for accepting an offer: finalize sweep, buy request close and chat opening."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from locompro.domain.models import BuyRequest, Chat, Offer, OfferEvent
from locompro.infra import offer_store
from locompro.services import acceptance_orchestrator
from locompro.services.errors import (
    DependencyFailureError,
    NotFoundError,
    StateConflictError,
    UnauthorizedError,
)


@pytest.fixture
async def market(make_user, make_buy_request, make_offer):
    """One buyer, three sellers, three pending offers on an active buy request."""
    buyer = await make_user(full_name="Buyer")
    sellers = [await make_user(full_name=f"Seller {i}") for i in range(3)]
    buy_request = await make_buy_request(buyer)
    offers = [await make_offer(buy_request, s, price=100 + 10 * i) for i, s in enumerate(sellers)]
    return buyer, sellers, buy_request, offers


async def _statuses(db, buy_request_id):
    result = await db.execute(
        select(Offer.id, Offer.status).where(Offer.buy_request_id == buy_request_id)
    )
    return dict(result.all())


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestAccept:

    async def test_accept_finalizes_siblings_and_closes(self, db_session, market, reload):
        buyer, _, buy_request, (o1, o2, o3) = market

        result = await acceptance_orchestrator.accept(db_session, o1.id, buyer.id)

        assert result.offer.status == "accepted"
        assert set(result.finalized_offer_ids) == {o2.id, o3.id}
        assert result.buy_request_closed is True
        assert await _statuses(db_session, buy_request.id) == {
            o1.id: "accepted", o2.id: "finalized", o3.id: "finalized",
        }
        assert (await reload(BuyRequest, buy_request.id)).status == "closed"

    async def test_accept_opens_chat(self, db_session, market):
        buyer, sellers, buy_request, (o1, _, _) = market

        result = await acceptance_orchestrator.accept(db_session, o1.id, buyer.id)

        assert result.chat_error is None
        assert result.chat is not None
        assert result.chat.buyer_id == buyer.id
        assert result.chat.seller_id == sellers[0].id
        assert result.chat.buy_request_id == buy_request.id
        assert result.chat.offer_id == o1.id

    async def test_only_pending_siblings_are_finalized(
        self, db_session, make_user, make_buy_request, make_offer,
    ):
        buyer = await make_user()
        buy_request = await make_buy_request(buyer)
        winner = await make_offer(buy_request, await make_user())
        rejected = await make_offer(
            buy_request, await make_user(), status="rejected", rejection_reason="Price too high",
        )

        result = await acceptance_orchestrator.accept(db_session, winner.id, buyer.id)

        assert result.finalized_offer_ids == []
        statuses = await _statuses(db_session, buy_request.id)
        assert statuses[rejected.id] == "rejected"

    async def test_events_recorded(self, db_session, market):
        buyer, _, _, (o1, o2, _) = market

        await acceptance_orchestrator.accept(db_session, o1.id, buyer.id)

        result = await db_session.execute(select(OfferEvent.offer_id, OfferEvent.event_type))
        events = {tuple(row) for row in result.all()}
        assert (o1.id, "accepted") in events
        assert (o1.id, "chat_opened") in events
        assert (o2.id, "finalized") in events

    async def test_accept_keeps_created_at(self, db_session, market, reload):
        buyer, _, _, (o1, _, _) = market
        created_at = (await reload(Offer, o1.id)).created_at

        await acceptance_orchestrator.accept(db_session, o1.id, buyer.id)

        assert (await reload(Offer, o1.id)).created_at == created_at


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


class TestAcceptGuards:

    async def test_second_accept_on_same_request_conflicts(self, db_session, market, reload):
        buyer, _, buy_request, (o1, o2, o3) = market
        await acceptance_orchestrator.accept(db_session, o1.id, buyer.id)

        with pytest.raises(StateConflictError):
            await acceptance_orchestrator.accept(db_session, o2.id, buyer.id)

        assert await _statuses(db_session, buy_request.id) == {
            o1.id: "accepted", o2.id: "finalized", o3.id: "finalized",
        }
        assert (await reload(BuyRequest, buy_request.id)).status == "closed"

    async def test_accepting_twice_conflicts(self, db_session, market):
        buyer, _, buy_request, (o1, _, _) = market
        await acceptance_orchestrator.accept(db_session, o1.id, buyer.id)

        with pytest.raises(StateConflictError):
            await acceptance_orchestrator.accept(db_session, o1.id, buyer.id)

        chats = await db_session.scalar(
            select(func.count()).select_from(Chat).where(Chat.buy_request_id == buy_request.id)
        )
        assert chats == 1
        accepted_events = await db_session.scalar(
            select(func.count()).select_from(OfferEvent)
            .where(OfferEvent.offer_id == o1.id, OfferEvent.event_type == "accepted")
        )
        assert accepted_events == 1

    async def test_seller_cannot_accept(self, db_session, market):
        _, sellers, _, (o1, _, _) = market
        with pytest.raises(UnauthorizedError):
            await acceptance_orchestrator.accept(db_session, o1.id, sellers[0].id)

    async def test_stranger_cannot_accept(self, db_session, market, make_user, reload):
        _, _, _, (o1, _, _) = market
        stranger = await make_user()

        with pytest.raises(UnauthorizedError):
            await acceptance_orchestrator.accept(db_session, o1.id, stranger.id)
        assert (await reload(Offer, o1.id)).status == "pending"

    async def test_rejected_offer_cannot_be_accepted(
        self, db_session, make_user, make_buy_request, make_offer,
    ):
        buyer = await make_user()
        buy_request = await make_buy_request(buyer)
        offer = await make_offer(buy_request, await make_user(), status="rejected",
                                 rejection_reason="Other")

        with pytest.raises(StateConflictError):
            await acceptance_orchestrator.accept(db_session, offer.id, buyer.id)

    async def test_closed_buy_request_refuses(self, db_session, make_user, make_buy_request, make_offer):
        buyer = await make_user()
        buy_request = await make_buy_request(buyer, status="closed")
        offer = await make_offer(buy_request, await make_user())

        with pytest.raises(StateConflictError, match="closed"):
            await acceptance_orchestrator.accept(db_session, offer.id, buyer.id)

    async def test_missing_offer(self, db_session, make_user):
        buyer = await make_user()
        with pytest.raises(NotFoundError):
            await acceptance_orchestrator.accept(db_session, "missing", buyer.id)

    async def test_unique_index_blocks_second_accepted(
        self, db_session, make_user, make_buy_request, make_offer, reload,
    ):
        """An accepted offer on a still-active request still blocks a second winner."""
        buyer = await make_user()
        buy_request = await make_buy_request(buyer)
        await make_offer(buy_request, await make_user(), status="accepted")
        contender = await make_offer(buy_request, await make_user())

        with pytest.raises(StateConflictError, match="already accepted"):
            await acceptance_orchestrator.accept(db_session, contender.id, buyer.id)

        assert (await reload(Offer, contender.id)).status == "pending"
        assert (await reload(BuyRequest, buy_request.id)).status == "active"


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


def _db_down(*args, **kwargs):
    raise OperationalError("UPDATE offers", {}, Exception("disk I/O error"))


class TestAcceptFailures:

    async def test_store_failure_rolls_back_everything(self, db_session, market, monkeypatch, reload):
        buyer, _, buy_request, (o1, o2, _) = market
        monkeypatch.setattr(
            offer_store, "finalize_pending_siblings", AsyncMock(side_effect=_db_down),
        )

        with pytest.raises(DependencyFailureError):
            await acceptance_orchestrator.accept(db_session, o1.id, buyer.id)

        assert (await reload(Offer, o1.id)).status == "pending"
        assert (await reload(Offer, o2.id)).status == "pending"
        assert (await reload(BuyRequest, buy_request.id)).status == "active"

    async def test_chat_failure_keeps_acceptance(self, db_session, market, monkeypatch, reload):
        buyer, _, buy_request, (o1, o2, _) = market
        monkeypatch.setattr(offer_store, "find_or_create_chat", AsyncMock(side_effect=_db_down))

        result = await acceptance_orchestrator.accept(db_session, o1.id, buyer.id)

        assert result.chat is None
        assert result.chat_error is not None
        assert result.offer.status == "accepted"
        assert (await reload(Offer, o2.id)).status == "finalized"
        assert (await reload(BuyRequest, buy_request.id)).status == "closed"


# ---------------------------------------------------------------------------
# Lost races
# ---------------------------------------------------------------------------


class TestLostRaces:

    async def test_offer_changed_after_read(
        self, db_session, market, concurrent_status_change, reload,
    ):
        buyer, _, buy_request, (o1, o2, _) = market
        concurrent_status_change("rejected")

        with pytest.raises(StateConflictError, match="changed status while being accepted"):
            await acceptance_orchestrator.accept(db_session, o1.id, buyer.id)

        assert (await reload(Offer, o1.id)).status == "rejected"
        assert (await reload(Offer, o2.id)).status == "pending"
        assert (await reload(BuyRequest, buy_request.id)).status == "active"
        assert await db_session.scalar(select(func.count()).select_from(Chat)) == 0

    async def test_buy_request_closed_by_other_acceptance(
        self, db_session, market, monkeypatch, reload,
    ):
        buyer, _, buy_request, (o1, o2, o3) = market
        monkeypatch.setattr(offer_store, "update_buy_request_status", AsyncMock(return_value=False))

        with pytest.raises(StateConflictError, match="closed by a concurrent acceptance"):
            await acceptance_orchestrator.accept(db_session, o1.id, buyer.id)

        assert await _statuses(db_session, buy_request.id) == {
            o1.id: "pending", o2.id: "pending", o3.id: "pending",
        }
        assert (await reload(BuyRequest, buy_request.id)).status == "active"
        events = await db_session.scalar(select(func.count()).select_from(OfferEvent))
        assert events == 0


# ---------------------------------------------------------------------------
# Retry paths
# ---------------------------------------------------------------------------


class TestRetries:

    async def test_open_chat_after_failed_chat(self, db_session, market, monkeypatch):
        buyer, sellers, _, (o1, _, _) = market
        with monkeypatch.context() as m:
            m.setattr(offer_store, "find_or_create_chat", AsyncMock(side_effect=_db_down))
            result = await acceptance_orchestrator.accept(db_session, o1.id, buyer.id)
        assert result.chat is None

        chat = await acceptance_orchestrator.open_chat(db_session, o1.id, sellers[0].id)

        assert chat.offer_id == o1.id

    async def test_open_chat_is_idempotent(self, db_session, market):
        buyer, _, _, (o1, _, _) = market
        result = await acceptance_orchestrator.accept(db_session, o1.id, buyer.id)

        again = await acceptance_orchestrator.open_chat(db_session, o1.id, buyer.id)

        assert again.id == result.chat.id
        count = await db_session.scalar(
            select(func.count()).select_from(Chat).where(Chat.offer_id == o1.id)
        )
        assert count == 1

    async def test_open_chat_requires_accepted(self, db_session, market):
        buyer, _, _, (o1, _, _) = market
        with pytest.raises(StateConflictError):
            await acceptance_orchestrator.open_chat(db_session, o1.id, buyer.id)

    async def test_open_chat_requires_participant(self, db_session, market, make_user):
        buyer, _, _, (o1, _, _) = market
        await acceptance_orchestrator.accept(db_session, o1.id, buyer.id)
        stranger = await make_user()

        with pytest.raises(UnauthorizedError):
            await acceptance_orchestrator.open_chat(db_session, o1.id, stranger.id)

    async def test_finalize_sweep_catches_stray_pending(
        self, db_session, make_user, make_buy_request, make_offer, reload,
    ):
        buyer = await make_user()
        buy_request = await make_buy_request(buyer, status="closed")
        await make_offer(buy_request, await make_user(), status="accepted")
        stray = await make_offer(buy_request, await make_user())

        first = await acceptance_orchestrator.finalize_siblings(db_session, buy_request.id)
        second = await acceptance_orchestrator.finalize_siblings(db_session, buy_request.id)

        assert first == [stray.id]
        assert second == []
        assert (await reload(Offer, stray.id)).status == "finalized"

    async def test_finalize_sweep_needs_accepted_offer(self, db_session, market):
        _, _, buy_request, _ = market
        with pytest.raises(StateConflictError, match="no accepted offer"):
            await acceptance_orchestrator.finalize_siblings(db_session, buy_request.id)
