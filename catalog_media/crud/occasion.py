import logging
from typing import Iterable, List, Set

from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_media.core.exceptions import InvalidInputError, ProductNotFoundError
from catalog_media.models import Occasion, Product, product_occasions

logger = logging.getLogger(__name__)


async def create_occasion(db: AsyncSession, name: str, sort_order: int = 0) -> Occasion:
    occasion = Occasion(name=name, sort_order=sort_order, is_active=True)
    db.add(occasion)
    await db.commit()
    return occasion


async def get_product_occasion_ids(db: AsyncSession, product_id: int) -> List[int]:
    result = await db.execute(
        select(product_occasions.c.occasion_id)
        .where(product_occasions.c.product_id == product_id)
        .order_by(product_occasions.c.occasion_id)
    )
    return list(result.scalars().all())


async def _check_refs(db: AsyncSession, product_id: int, occasion_ids: Set[int]) -> None:
    if await db.get(Product, product_id) is None:
        raise ProductNotFoundError(f"Product {product_id} not found", product_id=product_id)
    if not occasion_ids:
        return
    result = await db.execute(select(Occasion.id).where(Occasion.id.in_(occasion_ids)))
    missing = occasion_ids - set(result.scalars().all())
    if missing:
        raise InvalidInputError(f"Unknown occasions: {sorted(missing)}", product_id=product_id)


async def set_product_occasions(
    db: AsyncSession,
    product_id: int,
    occasion_ids: Iterable[int],
) -> List[int]:
    """Заменяет набор связей продукта целиком, в одной транзакции."""
    wanted = set(occasion_ids)
    try:
        await _check_refs(db, product_id, wanted)
        current = set(await get_product_occasion_ids(db, product_id))

        to_remove = current - wanted
        to_add = wanted - current
        if to_remove:
            await db.execute(
                delete(product_occasions).where(
                    product_occasions.c.product_id == product_id,
                    product_occasions.c.occasion_id.in_(to_remove),
                )
            )
        if to_add:
            await db.execute(
                insert(product_occasions),
                [{"product_id": product_id, "occasion_id": oid} for oid in sorted(to_add)],
            )
        await db.commit()
    except BaseException:
        await db.rollback()
        raise

    logger.info(
        "Поводы продукта %s: +%d / -%d", product_id, len(to_add), len(to_remove)
    )
    return sorted(wanted)


async def link(db: AsyncSession, product_id: int, occasion_id: int) -> bool:
    try:
        await _check_refs(db, product_id, {occasion_id})
        if occasion_id in await get_product_occasion_ids(db, product_id):
            return False
        await db.execute(insert(product_occasions).values(product_id=product_id, occasion_id=occasion_id))
        await db.commit()
    except BaseException:
        await db.rollback()
        raise
    return True


async def unlink(db: AsyncSession, product_id: int, occasion_id: int) -> bool:
    try:
        result = await db.execute(
            delete(product_occasions).where(
                product_occasions.c.product_id == product_id,
                product_occasions.c.occasion_id == occasion_id,
            )
        )
        await db.commit()
    except BaseException:
        await db.rollback()
        raise
    return result.rowcount > 0
