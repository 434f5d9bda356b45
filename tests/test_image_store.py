import asyncio

import pytest

from catalog_media.core.config import DedupScope
from catalog_media.core.exceptions import ImageNotFoundError
from catalog_media.crud import product_image as image_crud
from catalog_media.models import SizeClass
from catalog_media.services.image_store import ImageStore, build_blob_key
from catalog_media.services.hashing import compute_content_hash
from catalog_media.services.variants import VariantGenerator
from conftest import stored_files


@pytest.fixture
def variants(image_bytes):
    return VariantGenerator().generate_from_bytes(image_bytes)


def test_blob_key_layout():
    digest = "ab" * 32

    assert build_blob_key(digest, SizeClass.THUMB) == f"thumb/ab/{digest}.webp"
    assert build_blob_key(digest, SizeClass.LARGE, namespace="products/4") == f"products/4/large/ab/{digest}.webp"


async def test_variant_set_is_committed_with_blobs(db, storage, media_root, product, image_bytes, variants):
    store = ImageStore(db, storage, scope=DedupScope.GLOBAL)
    content_hash = compute_content_hash(image_bytes)

    async with store.transaction() as tx:
        rows = await store.add_variant_set(product.id, content_hash, 0, variants)

    assert tx.blob_writes == 4
    assert len(stored_files(media_root)) == 4
    assert {row.size_class for row in rows} == set(SizeClass)
    assert await store.index(content_hash) == {(product.id, size) for size in SizeClass}
    for row in rows:
        assert await storage.get(row.blob_key) == next(v.data for v in variants if v.size_class == row.size_class)


async def test_failure_rolls_back_rows_and_blobs(db, storage, media_root, product, image_bytes, variants):
    store = ImageStore(db, storage)
    content_hash = compute_content_hash(image_bytes)
    # после rollback объекты сессии просрочены
    product_id = product.id

    with pytest.raises(RuntimeError, match="boom"):
        async with store.transaction():
            await store.add_variant_set(product_id, content_hash, 0, variants)
            raise RuntimeError("boom")

    assert await image_crud.get_product_images(db, product_id) == []
    assert stored_files(media_root) == set()


async def test_cancellation_leaves_nothing_behind(db, storage, media_root, product, image_bytes, variants):
    store = ImageStore(db, storage)
    content_hash = compute_content_hash(image_bytes)
    written = asyncio.Event()
    product_id = product.id

    async def upload():
        async with store.transaction():
            await store.add_variant_set(product_id, content_hash, 0, variants)
            written.set()
            await asyncio.sleep(30)

    task = asyncio.create_task(upload())
    await written.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert await image_crud.get_product_images(db, product_id) == []
    assert stored_files(media_root) == set()


async def test_write_requires_transaction(db, storage, product, variants):
    store = ImageStore(db, storage)

    with pytest.raises(RuntimeError, match="outside of transaction"):
        await store.add_variant_set(product.id, "00" * 32, 0, variants)


async def test_shared_blob_survives_until_last_reference(
    db, storage, media_root, product, other_product, image_bytes, variants
):
    store = ImageStore(db, storage)
    content_hash = compute_content_hash(image_bytes)
    async with store.transaction():
        donor = await store.add_variant_set(product.id, content_hash, 0, variants)
    async with store.transaction() as tx:
        linked = await store.link_variant_set(other_product.id, 0, donor)

    assert tx.blob_writes == 0
    thumb = next(row for row in donor if row.size_class == SizeClass.THUMB)
    linked_thumb = next(row for row in linked if row.size_class == SizeClass.THUMB)
    assert linked_thumb.blob_key == thumb.blob_key

    first = await store.delete(thumb.id)
    assert first.blob_removed is False
    assert thumb.blob_key in stored_files(media_root)

    second = await store.delete(linked_thumb.id)
    assert second.blob_removed is True
    assert thumb.blob_key not in stored_files(media_root)


async def test_delete_unknown_asset(db, storage):
    with pytest.raises(ImageNotFoundError):
        await ImageStore(db, storage).delete(9999)


async def test_local_scope_namespaces_blobs(db, storage, media_root, product, image_bytes, variants):
    store = ImageStore(db, storage, scope=DedupScope.LOCAL)

    async with store.transaction():
        rows = await store.add_variant_set(product.id, compute_content_hash(image_bytes), 0, variants)

    assert all(row.blob_key.startswith(f"products/{product.id}/") for row in rows)
    assert all(row.url.startswith(f"/media/products/{product.id}/") for row in rows)


async def test_descriptors_are_ordered(db, storage, product, image_bytes, variants):
    store = ImageStore(db, storage)
    async with store.transaction():
        await store.add_variant_set(product.id, compute_content_hash(image_bytes), 0, variants)

    descriptors = await store.descriptors(product.id)

    assert [d.size_class for d in descriptors] == list(SizeClass)
    assert all(d.mime_type == "image/webp" for d in descriptors)
