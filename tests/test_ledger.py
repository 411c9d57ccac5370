"""Tests for table claims and releases"""

import asyncio

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from uuid import uuid4

from app.core.errors import Conflict, InvalidRequest
from app.database import Base
from app.models.restaurant import Restaurant, Table, TableStatus
from app.services.ledger import claim_table, release_table


@pytest.mark.asyncio
async def test_claim_free_table(test_db, test_restaurant, test_table):
    claim = await claim_table(test_db, test_table.id, test_restaurant.id)

    assert claim.table_id == test_table.id
    await test_db.refresh(test_table)
    assert test_table.status == TableStatus.REQUESTED.value


@pytest.mark.asyncio
async def test_claim_requested_table_rejected(test_db, test_restaurant, test_table):
    await claim_table(test_db, test_table.id, test_restaurant.id)

    with pytest.raises(Conflict) as exc:
        await claim_table(test_db, test_table.id, test_restaurant.id)
    assert exc.value.code == "table_not_available"


@pytest.mark.asyncio
async def test_claim_unknown_table_rejected(test_db, test_restaurant):
    with pytest.raises(Conflict):
        await claim_table(test_db, uuid4(), test_restaurant.id)


@pytest.mark.asyncio
async def test_claim_for_other_restaurant_is_undone(test_db, test_restaurant, test_table):
    other = Restaurant(id=uuid4(), name="Elsewhere", phone="+41440000000")
    test_db.add(other)
    await test_db.commit()

    with pytest.raises(InvalidRequest) as exc:
        await claim_table(test_db, test_table.id, other.id)
    assert exc.value.code == "table_not_in_restaurant"

    await test_db.refresh(test_table)
    assert test_table.status == TableStatus.FREE.value


@pytest.mark.asyncio
async def test_release_to_reserved_and_free(test_db, test_restaurant, test_table):
    await claim_table(test_db, test_table.id, test_restaurant.id)

    await release_table(test_db, test_table.id, TableStatus.RESERVED)
    await test_db.refresh(test_table)
    assert test_table.status == TableStatus.RESERVED.value

    # Releasing twice is harmless
    await release_table(test_db, test_table.id, TableStatus.FREE)
    await release_table(test_db, test_table.id, TableStatus.FREE)
    await test_db.refresh(test_table)
    assert test_table.status == TableStatus.FREE.value


@pytest.mark.asyncio
async def test_release_to_requested_not_allowed(test_db, test_table):
    with pytest.raises(ValueError):
        await release_table(test_db, test_table.id, TableStatus.REQUESTED)


@pytest.mark.asyncio
async def test_concurrent_claims_have_single_winner():
    """Claims from separate sessions on one free table: exactly one succeeds"""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    restaurant_id, table_id = uuid4(), uuid4()
    async with session_factory() as db:
        db.add(Restaurant(id=restaurant_id, name="Busy Place", phone="+41441111111"))
        db.add(Table(id=table_id, restaurant_id=restaurant_id, seats=2, status=TableStatus.FREE.value))
        await db.commit()

    async def attempt() -> bool:
        async with session_factory() as db:
            try:
                await claim_table(db, table_id, restaurant_id)
            except Conflict:
                return False
            return True

    results = await asyncio.gather(*(attempt() for _ in range(5)))

    assert results.count(True) == 1
    await engine.dispose()
