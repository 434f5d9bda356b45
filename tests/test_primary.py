import asyncio

import pytest

from catalog_media.core.exceptions import ImageNotFoundError, NoImagesError, ProductNotFoundError
from catalog_media.crud import product as product_crud
from catalog_media.crud import product_image as image_crud
from catalog_media.models import SizeClass
from catalog_media.services.primary import PrimaryImageSelector
from conftest import make_image_bytes


async def primaries(db, product_id):
    return [img for img in await image_crud.get_product_images(db, product_id) if img.is_primary]


async def test_first_ingest_picks_medium_variant(db, service, product, image_bytes):
    result = await service.ingest(db, product.id, image_bytes)

    marked = await primaries(db, product.id)
    assert len(marked) == 1
    assert marked[0].size_class == SizeClass.MEDIUM
    assert result.primary_image == marked[0].url
    assert (await product_crud.get_product(db, product.id)).primary_image == marked[0].url


async def test_set_primary_moves_the_mark(db, service, product):
    await service.ingest(db, product.id, make_image_bytes(color=(1, 2, 3)))
    await service.ingest(db, product.id, make_image_bytes(color=(4, 5, 6)))
    images = await image_crud.get_image_set(db, product.id, 1)
    target = next(img for img in images if img.size_class == SizeClass.LARGE)

    chosen = await PrimaryImageSelector().set_primary(db, product.id, target.id)

    marked = await primaries(db, product.id)
    assert [img.id for img in marked] == [target.id]
    assert chosen.id == target.id
    assert (await product_crud.get_product(db, product.id)).primary_image == target.url


async def test_set_primary_rejects_foreign_image(db, service, product, other_product, image_bytes):
    product_id, other_id = product.id, other_product.id
    await service.ingest(db, other_id, image_bytes)
    foreign = (await image_crud.get_product_images(db, other_id))[0]

    with pytest.raises(ImageNotFoundError):
        await PrimaryImageSelector().set_primary(db, product_id, foreign.id)

    assert await primaries(db, product_id) == []


async def test_ensure_primary_requires_images(db, product):
    with pytest.raises(NoImagesError):
        await PrimaryImageSelector().ensure_primary(db, product.id)


async def test_ensure_primary_ends_its_transaction(db, service, product, image_bytes):
    product_id = product.id
    selector = PrimaryImageSelector()

    with pytest.raises(NoImagesError):
        await selector.ensure_primary(db, product_id)
    assert not db.in_transaction()

    await service.ingest(db, product_id, image_bytes)
    await db.commit()

    # метка и кэш уже согласованы, менять нечего
    chosen = await selector.ensure_primary(db, product_id)

    assert chosen.is_primary
    assert not db.in_transaction()


async def test_ensure_primary_unknown_product(db):
    with pytest.raises(ProductNotFoundError):
        await PrimaryImageSelector().ensure_primary(db, 424242)


async def test_ensure_primary_repairs_missing_mark(db, service, product, image_bytes):
    await service.ingest(db, product.id, image_bytes)
    for img in await image_crud.get_product_images(db, product.id):
        img.is_primary = False
    await db.commit()

    chosen = await PrimaryImageSelector().ensure_primary(db, product.id)

    assert chosen.size_class == SizeClass.MEDIUM
    assert [img.id for img in await primaries(db, product.id)] == [chosen.id]


async def test_ensure_primary_collapses_duplicates(db, service, product, image_bytes):
    await service.ingest(db, product.id, image_bytes)
    for img in await image_crud.get_product_images(db, product.id):
        img.is_primary = True
    await db.commit()

    chosen = await PrimaryImageSelector().ensure_primary(db, product.id)

    assert chosen.size_class == SizeClass.THUMB
    assert len(await primaries(db, product.id)) == 1


async def test_is_primary_upload_takes_the_mark(db, service, product):
    await service.ingest(db, product.id, make_image_bytes(color=(1, 2, 3)))

    result = await service.ingest(db, product.id, make_image_bytes(color=(9, 9, 9)), is_primary=True)

    marked = await primaries(db, product.id)
    assert len(marked) == 1
    assert marked[0].image_index == result.image_index == 1
    assert marked[0].size_class == SizeClass.MEDIUM


async def test_concurrent_set_primary_leaves_one_mark(session_factory, service, product):
    product_id = product.id
    async with session_factory() as session:
        await service.ingest(session, product_id, make_image_bytes(color=(1, 2, 3)))
        await service.ingest(session, product_id, make_image_bytes(color=(4, 5, 6)))
        candidates = [img.id for img in await image_crud.get_product_images(session, product_id)]

    async def choose(asset_id):
        async with session_factory() as session:
            await PrimaryImageSelector().set_primary(session, product_id, asset_id)

    await asyncio.gather(*(choose(asset_id) for asset_id in candidates))

    async with session_factory() as session:
        marked = await primaries(session, product_id)
        assert len(marked) == 1
        assert (await product_crud.get_product(session, product_id)).primary_image == marked[0].url
