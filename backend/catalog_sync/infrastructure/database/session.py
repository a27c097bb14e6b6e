"""
Gestion de sesiones de base de datos.

El engine y la session factory se crean una vez al inicio del proceso
(ver build_sync_engine) y se pasan explicitamente a quien los use.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from catalog_sync.core.config import Settings


# Base para modelos de SQLAlchemy
Base = declarative_base()


def _create_engine_args(settings: Settings, url: str) -> dict:
    """
    Construye los argumentos del engine segun el tipo de base de datos.
    PostgreSQL usa pool de conexiones, SQLite no lo soporta.
    """
    args = {
        "echo": settings.DEBUG,
        "future": True,
    }

    # Configuracion de pool solo para PostgreSQL
    if "postgresql" in url:
        args.update({
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_pre_ping": True,  # Verifica conexion antes de usar
        })

    return args


def create_engine(settings: Settings, url: Optional[str] = None) -> AsyncEngine:
    """Crea el engine async (por defecto con settings.effective_database_url)."""
    url = url or settings.effective_database_url
    return create_async_engine(url, **_create_engine_args(settings, url))


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory ligada a un engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False
    )


@asynccontextmanager
async def session_scope(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """
    Sesion transaccional: commit al salir, rollback si hay excepcion.

    Yields:
        AsyncSession: Sesion de base de datos
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine) -> None:
    """Inicializa la base de datos creando todas las tablas."""
    # Registra los modelos en Base.metadata
    from catalog_sync.infrastructure.database import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
