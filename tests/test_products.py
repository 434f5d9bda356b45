import pytest
from sqlalchemy import func, select

from catalog_media.core.exceptions import ProductNotFoundError
from catalog_media.crud import occasion as occasion_crud
from catalog_media.crud import product as product_crud
from catalog_media.models import CarouselEntry, ProductImage, product_occasions
from catalog_media.services.carousel import CarouselCurator
from conftest import make_image_bytes, stored_files


async def scalar(db, stmt):
    return (await db.execute(stmt)).scalar_one()


async def test_delete_cascades_to_dependents(db, storage, service, media_root, product, image_bytes):
    product_id = product.id
    occasion = await occasion_crud.create_occasion(db, "Graduación")
    await occasion_crud.link(db, product_id, occasion.id)
    await service.ingest(db, product_id, image_bytes)
    entry = await CarouselCurator().create_entry(db, product_id)
    await CarouselCurator().activate(db, entry.id)

    summary = await product_crud.delete_product(db, storage, product_id)

    assert summary["deleted_images"] == 4
    assert len(summary["removed_blobs"]) == 4
    assert summary["kept_blobs"] == []
    assert await product_crud.get_product(db, product_id) is None
    assert await scalar(db, select(func.count(ProductImage.id))) == 0
    assert await scalar(db, select(func.count()).select_from(product_occasions)) == 0
    assert await scalar(db, select(func.count(CarouselEntry.id))) == 0
    assert stored_files(media_root) == set()


async def test_shared_blobs_outlive_one_product(db, storage, service, media_root, product, other_product, image_bytes):
    product_id, other_id = product.id, other_product.id
    await service.ingest(db, product_id, image_bytes)
    await service.ingest(db, other_id, image_bytes)

    summary = await product_crud.delete_product(db, storage, product_id)

    assert summary["removed_blobs"] == []
    assert len(summary["kept_blobs"]) == 4
    assert len(stored_files(media_root)) == 4
    remaining = await service.get_descriptors(db, other_id)
    for descriptor in remaining:
        assert await storage.exists(descriptor.url.removeprefix("/media/"))

    summary = await product_crud.delete_product(db, storage, other_id)

    assert len(summary["removed_blobs"]) == 4
    assert stored_files(media_root) == set()


async def test_delete_keeps_other_products_untouched(db, storage, service, product, other_product):
    product_id, other_id = product.id, other_product.id
    await service.ingest(db, product_id, make_image_bytes(color=(1, 1, 1)))
    await service.ingest(db, other_id, make_image_bytes(color=(2, 2, 2)))

    await product_crud.delete_product(db, storage, product_id)

    assert len(await service.get_descriptors(db, other_id)) == 4


async def test_delete_unknown_product(db, storage):
    with pytest.raises(ProductNotFoundError):
        await product_crud.delete_product(db, storage, 5150)
