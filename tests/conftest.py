from io import BytesIO

import pytest
from PIL import Image
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from catalog_media.core.database import init_models
from catalog_media.crud import product as product_crud
from catalog_media.services.image_service import ImageService
from catalog_media.services.storage import LocalBlobStorage


def make_image_bytes(color=(200, 30, 30), size=(800, 640), fmt="PNG", mode="RGB") -> bytes:
    img = Image.new(mode, size, color)
    # полоса, чтобы обрезка по центру была заметна
    stripe = Image.new(mode, (size[0] // 4, size[1]), (0, 0, 0) if mode == "RGB" else (0, 0, 0, 255))
    img.paste(stripe, (0, 0))
    buffer = BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def media_root(tmp_path):
    return tmp_path / "media"


@pytest.fixture
def storage(media_root):
    return LocalBlobStorage(root=media_root, base_url="/media/", retry_multiplier=0)


@pytest.fixture
def service(storage):
    return ImageService(storage=storage)


@pytest.fixture
async def product(db):
    return await product_crud.create_product(db, "Ramo de rosas rojas")


@pytest.fixture
async def other_product(db):
    return await product_crud.create_product(db, "Bouquet de girasoles")


@pytest.fixture
def image_bytes():
    return make_image_bytes()


def stored_files(media_root):
    if not media_root.exists():
        return set()
    return {
        str(path.relative_to(media_root))
        for path in media_root.rglob("*")
        if path.is_file() and not path.name.startswith(".tmp-")
    }
