import logging
from typing import AsyncIterator
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from starlette.requests import HTTPConnection

logger = logging.getLogger(__name__)

Base = declarative_base()


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Создает асинхронный движок для указанной базы данных"""
    return create_async_engine(database_url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Создает таблицы, если их еще нет"""
    # Импорт моделей регистрирует таблицы в Base.metadata
    from shopdesk.models import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Схема базы данных готова")


async def close_db(engine: AsyncEngine) -> None:
    await engine.dispose()
    logger.info("Соединения с базой данных закрыты")


async def get_session(connection: HTTPConnection) -> AsyncIterator[AsyncSession]:
    """Сессия БД на время запроса или websocket-соединения"""
    async with connection.app.state.session_factory() as session:
        yield session
