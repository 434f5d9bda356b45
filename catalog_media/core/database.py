from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from catalog_media.core.config import settings

Base = declarative_base()

engine = create_async_engine(settings.database_url, future=True)

AsyncSessionLocal = async_sessionmaker(
    engine,
    expire_on_commit=False,
    autoflush=False,
)


async def init_models(bind=None) -> None:
    """Создать все таблицы (для тестов и локального запуска)."""
    # Модели должны быть зарегистрированы в Base.metadata до create_all
    import catalog_media.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
