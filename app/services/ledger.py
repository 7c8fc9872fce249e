"""
Resource ledger: current quantity/status truth of a stock item.

Every mutation is a single conditional UPDATE checked by affected-row count, so two
callers racing for the last unit cannot drive quantity_available below zero: the
loser gets InsufficientStock. Functions only execute/flush; the request transaction
(get_db) owns commit/rollback. After each mutation the Resource in the session is
re-read (populate_existing) and returned.
"""
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import DAMAGED_CONDITION
from app.exceptions import InsufficientStock, LedgerCorruption, NotFound
from app.models import Resource
from app.models.resource import ResourceStatus

logger = logging.getLogger(__name__)


async def _reload(db: AsyncSession, resource_id: int) -> Resource:
    resource = await db.get(Resource, resource_id, populate_existing=True)
    if resource is None:
        raise NotFound("Resource not found", resource_id=resource_id)
    return resource


async def _exists(db: AsyncSession, resource_id: int) -> bool:
    result = await db.execute(select(Resource.id).where(Resource.id == resource_id))
    return result.scalar_one_or_none() is not None


async def lock(db: AsyncSession, resource_id: int) -> Resource:
    """
    Current row under FOR UPDATE, refreshed into the session. Custody snapshots are
    built from it so they never carry values read before a concurrent commit.
    """
    result = await db.execute(
        select(Resource)
        .where(Resource.id == resource_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    resource = result.scalar_one_or_none()
    if resource is None:
        raise NotFound("Resource not found", resource_id=resource_id)
    return resource


async def decrement_available(db: AsyncSession, resource_id: int, n: int = 1) -> Resource:
    """Takes n units out of available stock. InsufficientStock if fewer than n are available."""
    if n < 1:
        raise ValueError("n must be >= 1")
    result = await db.execute(
        update(Resource)
        .where(Resource.id == resource_id)
        .where(Resource.quantity_available >= n)
        .values(quantity_available=Resource.quantity_available - n)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        if not await _exists(db, resource_id):
            raise NotFound("Resource not found", resource_id=resource_id)
        logger.info("ledger_insufficient_stock resource_id=%s requested=%s", resource_id, n)
        raise InsufficientStock("Insufficient quantity available", resource_id=resource_id, requested=n)
    resource = await _reload(db, resource_id)
    logger.info(
        "ledger_decremented resource_id=%s n=%s quantity_available=%s",
        resource_id, n, resource.quantity_available,
    )
    return resource


async def increment_available(db: AsyncSession, resource_id: int, n: int = 1) -> Resource:
    """
    Puts n units back into available stock.
    Exceeding quantity_total means an upstream bug: logged as critical and raised as
    LedgerCorruption, the value is never clamped.
    """
    if n < 1:
        raise ValueError("n must be >= 1")
    result = await db.execute(
        update(Resource)
        .where(Resource.id == resource_id)
        .where(Resource.quantity_available + n <= Resource.quantity_total)
        .values(quantity_available=Resource.quantity_available + n)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        if not await _exists(db, resource_id):
            raise NotFound("Resource not found", resource_id=resource_id)
        logger.critical(
            "ledger_corruption resource_id=%s increment=%s would exceed quantity_total",
            resource_id, n,
        )
        raise LedgerCorruption(
            "quantity_available would exceed quantity_total",
            resource_id=resource_id,
            increment=n,
        )
    resource = await _reload(db, resource_id)
    logger.info(
        "ledger_incremented resource_id=%s n=%s quantity_available=%s",
        resource_id, n, resource.quantity_available,
    )
    return resource


async def set_owner(db: AsyncSession, resource_id: int, organization_id: int) -> Resource:
    """Reassigns the resource to an organization (provisioning)."""
    result = await db.execute(
        update(Resource)
        .where(Resource.id == resource_id)
        .values(organization_id=organization_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound("Resource not found", resource_id=resource_id)
    return await _reload(db, resource_id)


async def set_status(db: AsyncSession, resource_id: int, status: ResourceStatus) -> Resource:
    result = await db.execute(
        update(Resource)
        .where(Resource.id == resource_id)
        .values(status=status)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound("Resource not found", resource_id=resource_id)
    logger.info("ledger_status resource_id=%s status=%s", resource_id, status.value)
    return await _reload(db, resource_id)


def is_damaged(condition: str | None) -> bool:
    return (condition or "").strip().lower() == DAMAGED_CONDITION


def status_after_issue(resource: Resource) -> ResourceStatus:
    """A serialized item with nothing left available is in use; bulk stock keeps its status."""
    if resource.is_serialized and resource.quantity_available == 0:
        return ResourceStatus.in_use
    return resource.status


def status_after_return(resource: Resource, damaged: bool) -> ResourceStatus:
    if damaged:
        return ResourceStatus.damaged
    if resource.status == ResourceStatus.in_use and resource.quantity_available > 0:
        return ResourceStatus.available
    return resource.status
