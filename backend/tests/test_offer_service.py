"""Tests for offer submission, editing, rejection, deletion and listing."""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from locompro.domain.models import Offer, OfferEvent
from locompro.domain.schemas import OfferContent, OfferEdit
from locompro.infra import offer_store
from locompro.services import counteroffer_composer, offer_service
from locompro.services.errors import (
    DependencyFailureError,
    NotFoundError,
    OfferValidationError,
    StateConflictError,
    UnauthorizedError,
)
from locompro.services.offer_service import resolve_rejection_reason


def _content(price="120", **overrides) -> OfferContent:
    data = {
        "title": "Road bike",
        "price": Decimal(price),
        "delivery_term": "in_person",
        "images": ["https://img.test/1.jpg"],
    }
    data.update(overrides)
    return OfferContent(**data)


@pytest.fixture
async def parties(make_user, make_buy_request):
    buyer = await make_user(full_name="Buyer")
    seller = await make_user(full_name="Seller")
    buy_request = await make_buy_request(buyer)
    return buyer, seller, buy_request


# ---------------------------------------------------------------------------
# Rejection reasons
# ---------------------------------------------------------------------------


class TestRejectionReason:

    def test_fixed_reason_kept(self):
        assert resolve_rejection_reason("Price too high") == "Price too high"

    def test_other_uses_custom_text(self):
        assert resolve_rejection_reason("Other", "  Found one elsewhere ") == "Found one elsewhere"

    def test_other_without_text_fails(self):
        with pytest.raises(OfferValidationError) as exc_info:
            resolve_rejection_reason("Other", "   ")
        assert exc_info.value.field == "custom_reason"

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_empty_reason_fails(self, reason):
        with pytest.raises(OfferValidationError, match="required"):
            resolve_rejection_reason(reason)

    def test_free_text_allowed(self):
        assert resolve_rejection_reason("Wrong colour") == "Wrong colour"


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


class TestCreateOffer:

    async def test_creates_pending_offer(self, db_session, parties):
        _, seller, buy_request = parties

        offer = await offer_service.create_offer(db_session, buy_request.id, seller.id, _content())

        assert offer.status == "pending"
        assert offer.price_history == []
        assert offer.rejection_reason is None
        assert offer.price == Decimal("120")
        events = (await db_session.execute(
            select(OfferEvent.event_type).where(OfferEvent.offer_id == offer.id)
        )).scalars().all()
        assert events == ["created"]

    async def test_own_buy_request_refused(self, db_session, parties):
        buyer, _, buy_request = parties
        with pytest.raises(UnauthorizedError, match="own buy request"):
            await offer_service.create_offer(db_session, buy_request.id, buyer.id, _content())

    async def test_closed_buy_request_refused(self, db_session, make_user, make_buy_request):
        buy_request = await make_buy_request(await make_user(), status="closed")
        seller = await make_user()
        with pytest.raises(StateConflictError, match="closed"):
            await offer_service.create_offer(db_session, buy_request.id, seller.id, _content())

    async def test_missing_buy_request(self, db_session, make_user):
        seller = await make_user()
        with pytest.raises(NotFoundError):
            await offer_service.create_offer(db_session, "nope", seller.id, _content())

    async def test_second_live_offer_refused(self, db_session, parties):
        _, seller, buy_request = parties
        await offer_service.create_offer(db_session, buy_request.id, seller.id, _content())
        with pytest.raises(StateConflictError, match="already have a pending offer"):
            await offer_service.create_offer(db_session, buy_request.id, seller.id, _content("99"))

    async def test_rejected_offer_also_blocks_new_one(self, db_session, parties, make_offer):
        _, seller, buy_request = parties
        await make_offer(buy_request, seller, status="rejected", rejection_reason="Other")
        with pytest.raises(StateConflictError, match="counteroffer"):
            await offer_service.create_offer(db_session, buy_request.id, seller.id, _content())

    @pytest.mark.parametrize("price", ["0", "-5"])
    async def test_non_positive_price(self, db_session, parties, price):
        _, seller, buy_request = parties
        with pytest.raises(OfferValidationError) as exc_info:
            await offer_service.create_offer(db_session, buy_request.id, seller.id, _content(price))
        assert exc_info.value.field == "price"

    async def test_image_count_enforced(self, db_session, parties):
        _, seller, buy_request = parties
        with pytest.raises(OfferValidationError, match="At least one image"):
            await offer_service.create_offer(
                db_session, buy_request.id, seller.id, _content(images=[]),
            )
        with pytest.raises(OfferValidationError, match="At most 5"):
            await offer_service.create_offer(
                db_session, buy_request.id, seller.id,
                _content(images=[f"https://img.test/{i}.jpg" for i in range(6)]),
            )

    async def test_blank_title(self, db_session, parties):
        _, seller, buy_request = parties
        with pytest.raises(OfferValidationError, match="title"):
            await offer_service.create_offer(
                db_session, buy_request.id, seller.id, _content(title="  "),
            )


# ---------------------------------------------------------------------------
# Reject
# ---------------------------------------------------------------------------


class TestReject:

    async def test_owner_rejects_with_reason(self, db_session, parties, make_offer, reload):
        buyer, seller, buy_request = parties
        offer = await make_offer(buy_request, seller, price=200)

        await offer_service.reject(db_session, offer.id, buyer.id, "Price too high")

        fresh = await reload(Offer, offer.id)
        assert fresh.status == "rejected"
        assert fresh.rejection_reason == "Price too high"
        assert fresh.price_history == []
        assert fresh.price == Decimal("200")

    async def test_other_stores_custom_text(self, db_session, parties, make_offer, reload):
        buyer, seller, buy_request = parties
        offer = await make_offer(buy_request, seller)

        await offer_service.reject(db_session, offer.id, buyer.id, "Other", "Colour is wrong")

        assert (await reload(Offer, offer.id)).rejection_reason == "Colour is wrong"

    async def test_missing_reason_leaves_offer_pending(self, db_session, parties, make_offer, reload):
        buyer, seller, buy_request = parties
        offer = await make_offer(buy_request, seller)

        with pytest.raises(OfferValidationError):
            await offer_service.reject(db_session, offer.id, buyer.id, "")
        assert (await reload(Offer, offer.id)).status == "pending"

    async def test_seller_cannot_reject(self, db_session, parties, make_offer):
        _, seller, buy_request = parties
        offer = await make_offer(buy_request, seller)
        with pytest.raises(UnauthorizedError):
            await offer_service.reject(db_session, offer.id, seller.id, "Price too high")

    async def test_rejected_offer_cannot_be_rejected_again(self, db_session, parties, make_offer):
        buyer, seller, buy_request = parties
        offer = await make_offer(buy_request, seller, status="rejected", rejection_reason="Other")
        with pytest.raises(StateConflictError):
            await offer_service.reject(db_session, offer.id, buyer.id, "Price too high")


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


class TestDelete:

    @pytest.mark.parametrize("status", ["pending", "rejected"])
    async def test_seller_deletes_live_offer(self, db_session, parties, make_offer, status):
        _, seller, buy_request = parties
        offer = await make_offer(buy_request, seller, status=status)
        offer_id = offer.id

        await offer_service.delete_offer(db_session, offer_id, seller.id)

        assert await db_session.scalar(select(Offer.id).where(Offer.id == offer_id)) is None

    @pytest.mark.parametrize("status", ["accepted", "finalized"])
    async def test_settled_offer_cannot_be_deleted(self, db_session, parties, make_offer, status):
        _, seller, buy_request = parties
        offer = await make_offer(buy_request, seller, status=status)
        with pytest.raises(StateConflictError):
            await offer_service.delete_offer(db_session, offer.id, seller.id)

    async def test_owner_cannot_delete(self, db_session, parties, make_offer):
        buyer, seller, buy_request = parties
        offer = await make_offer(buy_request, seller)
        with pytest.raises(UnauthorizedError):
            await offer_service.delete_offer(db_session, offer.id, buyer.id)

    async def test_deleted_offer_frees_seller_slot(self, db_session, parties):
        _, seller, buy_request = parties
        offer = await offer_service.create_offer(db_session, buy_request.id, seller.id, _content())
        await offer_service.delete_offer(db_session, offer.id, seller.id)

        again = await offer_service.create_offer(db_session, buy_request.id, seller.id, _content())

        assert again.status == "pending"


# ---------------------------------------------------------------------------
# Edit
# ---------------------------------------------------------------------------


class TestEdit:

    async def test_pending_edit_changes_price_without_history(
        self, db_session, parties, make_offer, reload,
    ):
        _, seller, buy_request = parties
        offer = await make_offer(buy_request, seller, price=200)
        before = await reload(Offer, offer.id)
        last_activity = before.last_activity_at

        await offer_service.edit_offer(
            db_session, offer.id, seller.id, OfferEdit(price=Decimal("190"), title="Cheaper bike"),
        )

        fresh = await reload(Offer, offer.id)
        assert fresh.status == "pending"
        assert fresh.price == Decimal("190")
        assert fresh.title == "Cheaper bike"
        assert fresh.price_history == []
        assert fresh.last_activity_at == last_activity

    async def test_rejected_price_change_needs_counteroffer(self, db_session, parties, make_offer):
        _, seller, buy_request = parties
        offer = await make_offer(buy_request, seller, price=200, status="rejected",
                                 rejection_reason="Price too high")
        with pytest.raises(StateConflictError, match="counteroffer"):
            await offer_service.edit_offer(db_session, offer.id, seller.id, OfferEdit(price=Decimal("150")))

    async def test_rejected_text_edit_stays_rejected(self, db_session, parties, make_offer, reload):
        _, seller, buy_request = parties
        offer = await make_offer(buy_request, seller, status="rejected", rejection_reason="Other")

        await offer_service.edit_offer(
            db_session, offer.id, seller.id, OfferEdit(description="Added more photos"),
        )

        fresh = await reload(Offer, offer.id)
        assert fresh.status == "rejected"
        assert fresh.description == "Added more photos"
        assert fresh.rejection_reason == "Other"

    async def test_accepted_offer_is_frozen(self, db_session, parties, make_offer):
        _, seller, buy_request = parties
        offer = await make_offer(buy_request, seller, status="accepted")
        with pytest.raises(StateConflictError):
            await offer_service.edit_offer(db_session, offer.id, seller.id, OfferEdit(title="x"))

    async def test_owner_cannot_edit(self, db_session, parties, make_offer):
        buyer, seller, buy_request = parties
        offer = await make_offer(buy_request, seller)
        with pytest.raises(UnauthorizedError):
            await offer_service.edit_offer(db_session, offer.id, buyer.id, OfferEdit(title="x"))


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestReads:

    async def test_recent_ordering_follows_activity(self, db_session, parties, make_user, make_offer):
        buyer, seller, buy_request = parties
        first = await make_offer(buy_request, seller, status="rejected", rejection_reason="Other")
        second = await make_offer(buy_request, await make_user())

        listed = await offer_service.list_offers_for_buy_request(db_session, buy_request.id)
        assert [o.id for o in listed] == [second.id, first.id]

        await counteroffer_composer.counteroffer(db_session, first.id, seller.id, _content("90"))

        listed = await offer_service.list_offers_for_buy_request(db_session, buy_request.id)
        assert [o.id for o in listed] == [first.id, second.id]

        by_created = await offer_service.list_offers_for_buy_request(
            db_session, buy_request.id, order_by="created",
        )
        assert [o.id for o in by_created] == [first.id, second.id]

    async def test_price_ordering(self, db_session, parties, make_user, make_offer):
        _, _, buy_request = parties
        dear = await make_offer(buy_request, await make_user(), price=300)
        cheap = await make_offer(buy_request, await make_user(), price=80)

        listed = await offer_service.list_offers_for_buy_request(
            db_session, buy_request.id, order_by="price",
        )
        assert [o.id for o in listed] == [cheap.id, dear.id]

    async def test_offers_by_seller(self, db_session, parties, make_buy_request, make_user, make_offer):
        buyer, seller, buy_request = parties
        other_request = await make_buy_request(buyer, title="Guitar")
        a = await make_offer(buy_request, seller)
        b = await make_offer(other_request, seller)
        await make_offer(buy_request, await make_user())

        mine = await offer_service.list_offers_by_seller(db_session, seller.id)
        assert [o.id for o in mine] == [b.id, a.id]

    async def test_events_visible_to_participants_only(
        self, db_session, parties, make_user, make_offer,
    ):
        buyer, seller, buy_request = parties
        offer = await make_offer(buy_request, seller)
        await offer_service.reject(db_session, offer.id, buyer.id, "Price too high")

        events = await offer_service.list_offer_events(db_session, offer.id, seller.id)
        assert [e.event_type for e in events] == ["rejected"]
        assert events[0].data == {"reason": "Price too high"}

        with pytest.raises(UnauthorizedError):
            await offer_service.list_offer_events(db_session, offer.id, (await make_user()).id)

    async def test_read_fault_is_dependency_failure(self, db_session, parties, make_offer, monkeypatch):
        buyer, seller, buy_request = parties
        offer = await make_offer(buy_request, seller)

        def _db_down(*args, **kwargs):
            raise OperationalError("SELECT offers", {}, Exception("connection reset"))

        monkeypatch.setattr(offer_store, "get_offer", AsyncMock(side_effect=_db_down))
        with pytest.raises(DependencyFailureError):
            await offer_service.get_offer(db_session, offer.id)
        with pytest.raises(DependencyFailureError):
            await offer_service.list_offer_events(db_session, offer.id, buyer.id)

        monkeypatch.setattr(offer_store, "list_offers_for_buy_request", AsyncMock(side_effect=_db_down))
        with pytest.raises(DependencyFailureError):
            await offer_service.list_offers_for_buy_request(db_session, buy_request.id)


class TestAllowedActions:

    def _offer(self, status):
        return SimpleNamespace(status=status, seller_id="seller")

    def test_owner_sees_accept_and_reject(self):
        br = SimpleNamespace(user_id="buyer", status="active")
        assert offer_service.allowed_actions(self._offer("pending"), br, "buyer") == ["accept", "reject"]

    def test_accept_hidden_on_closed_request(self):
        br = SimpleNamespace(user_id="buyer", status="closed")
        assert offer_service.allowed_actions(self._offer("pending"), br, "buyer") == ["reject"]

    def test_anonymous_sees_nothing(self):
        br = SimpleNamespace(user_id="buyer", status="active")
        assert offer_service.allowed_actions(self._offer("pending"), br, None) == []

    def test_seller_on_rejected(self):
        br = SimpleNamespace(user_id="buyer", status="active")
        assert offer_service.allowed_actions(self._offer("rejected"), br, "seller") == [
            "counteroffer", "edit", "delete",
        ]
