"""
Configuración de fixtures para pytest.

Incluye dobles en memoria para el cache rapido y para una tabla Feishu,
de modo que los tests del motor no dependan de Redis ni de la red.
"""
from typing import Any, AsyncGenerator, AsyncIterator, Dict, List, Optional, Sequence, Set, Tuple

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from catalog_sync.domain.entities.sync_models import (
    DomainRecord,
    ExternalColumn,
    ExternalRecord,
    FeishuCredentials,
    TargetConfig,
)
from catalog_sync.infrastructure.database.session import Base
from catalog_sync.infrastructure.database import models  # noqa: F401
from catalog_sync.infrastructure.external.feishu.field_templates import expected_type_code
from catalog_sync.shared.constants.sync_constants import ContentType, DataKind
from catalog_sync.shared.exceptions.remote import RemoteRequestError
from catalog_sync.shared.exceptions.sync import CacheUnavailableError


# URL de base de datos de prueba
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# =============================================================================
# Dobles en memoria
# =============================================================================

class InMemoryCache:
    """Mismo contrato que RedisCache, sobre un dict. `available=False` simula caida."""

    def __init__(self, key_prefix: str = "feishu"):
        self.key_prefix = key_prefix
        self.store: Dict[str, Any] = {}
        self.ttls: Dict[str, int] = {}
        self.available = True

    def key(self, *parts: str) -> str:
        return ":".join([self.key_prefix, *parts])

    def _check(self, operation: str, key: str) -> None:
        if not self.available:
            raise CacheUnavailableError(operation, key, "cache caido")

    async def get_json(self, key: str) -> Optional[Any]:
        self._check("get", key)
        return self.store.get(key)

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._check("set", key)
        self.store[key] = value
        self.ttls[key] = ttl_seconds

    async def delete(self, key: str) -> None:
        self._check("delete", key)
        self.store.pop(key, None)
        self.ttls.pop(key, None)


class FakeFeishuTable:
    """
    Tabla Feishu en memoria con la misma interfaz que FeishuTableClient.

    Como la API real, search devuelve fields por nombre de columna (texto en
    segmentos) y las escrituras usan column_id.
    """

    def __init__(self, column_names: Sequence[Tuple[str, int]] = ()):
        self.columns: List[ExternalColumn] = []
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.create_field_calls: List[str] = []
        self.batch_create_calls = 0
        self.batch_update_calls = 0
        self.delete_calls: List[str] = []
        self.fail_create_batches: Set[int] = set()
        self.fail_update_batches: Set[int] = set()
        self.fail_field_names: Set[str] = set()
        self._next_field = 0
        self._next_record = 0
        for name, type_code in column_names:
            self.add_column(name, type_code)

    def add_column(self, name: str, type_code: int = 1) -> ExternalColumn:
        self._next_field += 1
        column = ExternalColumn(column_id=f"fld{self._next_field:03d}", display_name=name, type_code=type_code)
        self.columns.append(column)
        return column

    def column_id(self, name: str) -> str:
        return next(c.column_id for c in self.columns if c.display_name == name)

    def add_row(self, fields_by_name: Dict[str, Any]) -> str:
        self._next_record += 1
        record_id = f"rec{self._next_record:04d}"
        self.rows[record_id] = {self.column_id(k): v for k, v in fields_by_name.items()}
        return record_id

    def row_by_name(self, record_id: str) -> Dict[str, Any]:
        names = {c.column_id: c.display_name for c in self.columns}
        return {names.get(k, k): v for k, v in self.rows[record_id].items()}

    async def list_fields(self, credentials, table_id) -> List[ExternalColumn]:
        return list(self.columns)

    async def create_field(self, credentials, table_id, template) -> ExternalColumn:
        name = template["field_name"]
        self.create_field_calls.append(name)
        if name in self.fail_field_names:
            raise RemoteRequestError(f"No se pudo crear {name}", http_status=400, api_code=1254001)
        return self.add_column(name, template["type"])

    def read_row(self, record_id: str) -> Dict[str, Any]:
        """Fila como la devuelve search: por nombre, texto en segmentos."""
        columns = {c.column_id: c for c in self.columns}
        row: Dict[str, Any] = {}
        for column_id, value in self.rows[record_id].items():
            column = columns.get(column_id)
            if column is None:
                row[column_id] = value
                continue
            if column.type_code == expected_type_code(DataKind.TEXT):
                value = [{"type": "text", "text": str(value)}]
            row[column.display_name] = value
        return row

    async def iter_records(self, credentials, table_id, *, field_names=None) -> AsyncIterator[ExternalRecord]:
        for record_id in list(self.rows):
            yield ExternalRecord(record_id=record_id, fields=self.read_row(record_id))

    async def batch_create_records(self, credentials, table_id, records) -> List[str]:
        call = self.batch_create_calls
        self.batch_create_calls += 1
        if call in self.fail_create_batches:
            raise RemoteRequestError("HTTP 500", http_status=500, retryable=True)
        ids = []
        for fields in records:
            self._next_record += 1
            record_id = f"rec{self._next_record:04d}"
            self.rows[record_id] = dict(fields)
            ids.append(record_id)
        return ids

    async def batch_update_records(self, credentials, table_id, updates) -> int:
        call = self.batch_update_calls
        self.batch_update_calls += 1
        if call in self.fail_update_batches:
            raise RemoteRequestError("HTTP 502", http_status=502, retryable=True)
        for record_id, fields in updates:
            self.rows[record_id].update(fields)
        return len(updates)

    async def delete_record(self, credentials, table_id, record_id) -> None:
        self.delete_calls.append(record_id)
        self.rows.pop(record_id)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def credentials() -> FeishuCredentials:
    return FeishuCredentials(app_id="cli_test", app_secret="secret_test", app_token="bascnTEST")


@pytest.fixture
def books_target(credentials) -> TargetConfig:
    return TargetConfig(credentials=credentials, table_id="tblBOOKS", content_type=ContentType.BOOKS)


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache()


@pytest.fixture
def table() -> FakeFeishuTable:
    """Tabla Feishu en memoria, vacia."""
    return FakeFeishuTable()


@pytest.fixture
def make_book():
    """Fabrica de DomainRecord de libros."""
    def _make(subject_id: str, title: str, **values: Any) -> DomainRecord:
        return DomainRecord(
            subject_id=subject_id,
            category=ContentType.BOOKS,
            values={"title": title, **values},
        )
    return _make


@pytest.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """
    Session factory sobre SQLite en memoria (una base nueva por test).
    """
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Sesion de base de datos para tests de repositorio."""
    async with session_factory() as session:
        yield session
