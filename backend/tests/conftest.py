"""Shared test infrastructure for the LoCompro test suite.

Provides:
- db_session: async SQLite in-memory session with all tables created
- make_user: factory for User rows
- make_buy_request: factory for BuyRequest rows
- make_offer: factory for Offer rows in any status
- reload: re-read a row from the database, bypassing the identity map
- concurrent_status_change: simulate another writer landing between read and write
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Import Base first, then models to register all tables
from locompro.infra.database import Base, enable_sqlite_foreign_keys

import locompro.domain.models  # noqa: F401

from locompro.domain.models import BuyRequest, Offer, User
from locompro.infra import offer_store


# ---------------------------------------------------------------------------
# Database session fixture
# ---------------------------------------------------------------------------

@pytest.fixture
async def db_session():
    """Async SQLite in-memory session with all tables created.

    Creates a fresh engine + tables for each test, yields a session,
    then rolls back and tears down.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_foreign_keys(engine.sync_engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def reload(db_session):
    """Fetch a fresh copy of a row; store updates bypass objects already loaded.

    Usage:
        offer = await reload(Offer, offer.id)
    """
    async def _reload(model, pk):
        return await db_session.get(model, pk, populate_existing=True)

    return _reload


# ---------------------------------------------------------------------------
# User factory
# ---------------------------------------------------------------------------

@pytest.fixture
def make_user(db_session):
    """Factory that creates a User row.

    Usage:
        buyer = await make_user(full_name="Ana")
    """
    async def _factory(
        email: str | None = None,
        full_name: str = "Test User",
        location: str = "Montevideo",
    ) -> User:
        user = User(
            id=str(uuid.uuid4()),
            email=email or f"user-{uuid.uuid4().hex[:8]}@test.com",
            password_hash="not-a-real-hash",
            full_name=full_name,
            location=location,
            is_active=True,
        )
        db_session.add(user)
        await db_session.flush()
        return user

    return _factory


# ---------------------------------------------------------------------------
# Buy request factory
# ---------------------------------------------------------------------------

@pytest.fixture
def make_buy_request(db_session):
    """Factory that creates a BuyRequest row owned by ``owner``.

    Usage:
        br = await make_buy_request(owner, title="iPhone 13")
    """
    async def _factory(
        owner: User,
        title: str = "Used bicycle",
        status: str = "active",
        min_price: float | None = 50,
        max_price: float | None = 300,
        zone: str = "Pocitos",
        condition: str = "any",
    ) -> BuyRequest:
        buy_request = BuyRequest(
            id=str(uuid.uuid4()),
            user_id=owner.id,
            title=title,
            description="Looking for a good deal",
            min_price=Decimal(str(min_price)) if min_price is not None else None,
            max_price=Decimal(str(max_price)) if max_price is not None else None,
            zone=zone,
            condition=condition,
            status=status,
            images=["https://img.test/cover.jpg"],
        )
        db_session.add(buy_request)
        await db_session.flush()
        return buy_request

    return _factory


# ---------------------------------------------------------------------------
# Offer factory
# ---------------------------------------------------------------------------

@pytest.fixture
def make_offer(db_session):
    """Factory that creates an Offer row directly, in any status.

    Offers made by successive calls get increasing timestamps so
    ordering by recency is deterministic.

    Usage:
        o1 = await make_offer(br, seller, price=100)
        o3 = await make_offer(br, seller, price=200, status="rejected",
                              rejection_reason="Price too high")
    """
    counter = {"n": 0}

    async def _factory(
        buy_request: BuyRequest,
        seller: User,
        price: float = 100,
        status: str = "pending",
        rejection_reason: str | None = None,
        price_history: list | None = None,
        images: list[str] | None = None,
        commit: bool = True,
    ) -> Offer:
        counter["n"] += 1
        ts = datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=counter["n"])
        offer = Offer(
            id=str(uuid.uuid4()),
            buy_request_id=buy_request.id,
            seller_id=seller.id,
            title=f"Offer {counter['n']}",
            description="Works great",
            price=Decimal(str(price)),
            images=images if images is not None else ["https://img.test/a.jpg"],
            delivery_term="in_person",
            contact_info={"zone": "Centro", "condition": "used"},
            status=status,
            rejection_reason=rejection_reason,
            price_history=price_history if price_history is not None else [],
            created_at=ts,
            updated_at=ts,
            last_activity_at=ts,
        )
        db_session.add(offer)
        if commit:
            await db_session.commit()
        else:
            await db_session.flush()
        return offer

    return _factory


# ---------------------------------------------------------------------------
# Concurrent writer
# ---------------------------------------------------------------------------

@pytest.fixture
def concurrent_status_change(db_session, monkeypatch):
    """Make every offer read be followed by another writer committing ``status``.

    The caller keeps the stale row it just read, so its guards pass and only
    the conditional UPDATE can notice the change.

    Usage:
        concurrent_status_change("rejected")
    """
    def _install(status: str):
        real_get_offer = offer_store.get_offer

        async def _get_offer_then_change(db, offer_id):
            offer = await real_get_offer(db, offer_id)
            await db_session.execute(
                update(Offer)
                .where(Offer.id == offer_id)
                .values(status=status)
                .execution_options(synchronize_session=False)
            )
            await db_session.commit()
            return offer

        monkeypatch.setattr(offer_store, "get_offer", _get_offer_then_change)

    return _install
