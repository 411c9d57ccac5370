"""Table ledger: the only code that changes a table's status"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from app.core.errors import Conflict, InvalidRequest, TABLE_NOT_AVAILABLE, TABLE_NOT_IN_RESTAURANT
from app.models.restaurant import Table, TableStatus

logger = structlog.get_logger()


@dataclass(frozen=True)
class TableClaim:
    table_id: UUID
    restaurant_id: UUID


async def claim_table(db: AsyncSession, table_id: UUID, restaurant_id: UUID) -> TableClaim:
    """
    Atomically move a free table to requested.

    A single conditional UPDATE decides the winner: concurrent callers either
    get the claim or Conflict(table_not_available). Claims on a table of a
    different restaurant are undone and rejected.
    """
    result = await db.execute(
        update(Table)
        .where(Table.id == table_id, Table.status == TableStatus.FREE.value)
        .values(status=TableStatus.REQUESTED.value)
        .returning(Table.id, Table.restaurant_id)
    )
    row = result.first()
    await db.commit()

    if row is None:
        logger.info("Table claim rejected", table_id=str(table_id))
        raise Conflict(TABLE_NOT_AVAILABLE)

    if row.restaurant_id != restaurant_id:
        logger.warning(
            "Table claimed for wrong restaurant, rolling back",
            table_id=str(table_id),
            restaurant_id=str(restaurant_id),
            owner_id=str(row.restaurant_id),
        )
        await release_table(db, table_id, TableStatus.FREE)
        raise InvalidRequest(TABLE_NOT_IN_RESTAURANT)

    logger.info("Table claimed", table_id=str(table_id), restaurant_id=str(restaurant_id))
    return TableClaim(table_id=row.id, restaurant_id=row.restaurant_id)


async def release_table(db: AsyncSession, table_id: UUID, target: TableStatus) -> None:
    """Set the table to free or reserved; repeating the call is harmless"""
    if target == TableStatus.REQUESTED:
        raise ValueError("release target must be free or reserved")

    await db.execute(
        update(Table)
        .where(Table.id == table_id)
        .values(status=target.value)
    )
    await db.commit()
    logger.info("Table released", table_id=str(table_id), status=target.value)
