"""
Modelos del motor de sincronizacion Douban -> Feishu.

Los tipos puros (registros, mapeos, ChangeSet) son dataclasses sin I/O.
Los que se serializan (SyncState en cache, RunSummary hacia el caller)
son modelos Pydantic.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, computed_field

from catalog_sync.shared.constants.sync_constants import (
    ContentType,
    MAPPING_STRATEGY,
    MAPPING_STRATEGY_VERSION,
    SyncPhase,
)
from catalog_sync.shared.utils.datetime_utils import DateTimeUtils


ProgressCallback = Callable[[int, int], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class FeishuCredentials:
    """Credenciales descifradas de una app Feishu (las provee el caller)."""

    app_id: str
    app_secret: str
    app_token: str

    def __repr__(self) -> str:
        return f"FeishuCredentials(app_id={self.app_id!r}, app_token={self.app_token!r})"


def build_table_key(app_token: str, table_id: str) -> str:
    """Clave de tabla externa: "<app_token>:<table_id>"."""
    return f"{app_token}:{table_id}"


def split_table_key(table_key: str) -> Tuple[str, str]:
    """Inverso de build_table_key."""
    app_token, sep, table_id = table_key.partition(":")
    if not sep or not app_token or not table_id:
        raise ValueError(f"table_key invalida: {table_key!r}")
    return app_token, table_id


@dataclass(frozen=True)
class TargetConfig:
    """Tabla destino de un sync: credenciales + tabla + tipo de contenido."""

    credentials: FeishuCredentials
    table_id: str
    content_type: ContentType

    @property
    def table_key(self) -> str:
        return build_table_key(self.credentials.app_token, self.table_id)


@dataclass
class DomainRecord:
    """Un item scrapeado de Douban, valores indexados por domain_name."""

    subject_id: str
    category: ContentType
    values: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ExternalColumn:
    """Columna tal como esta definida hoy en la tabla Feishu."""

    column_id: str
    display_name: str
    type_code: int
    ui_type: Optional[str] = None
    properties: Optional[Dict[str, Any]] = None


@dataclass
class ExternalRecord:
    """Fila de la tabla Feishu; fields indexados por column_id."""

    record_id: str
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FieldMapping:
    """
    Mapeo domain_name -> column_id para una tabla de un usuario.

    Solo lo modifica el resolver; se borra unicamente en un reset explicito.
    """

    user_id: str
    table_key: str
    content_type: ContentType
    columns: Dict[str, str] = field(default_factory=dict)
    strategy: str = MAPPING_STRATEGY
    strategy_version: str = MAPPING_STRATEGY_VERSION
    updated_at: datetime = field(default_factory=DateTimeUtils.now_utc)

    def column_for(self, domain_name: str) -> Optional[str]:
        return self.columns.get(domain_name)

    def to_dict(self) -> Dict[str, Any]:
        """Forma serializable (cache JSON)."""
        return {
            "user_id": self.user_id,
            "table_key": self.table_key,
            "content_type": ContentType(self.content_type).value,
            "columns": dict(self.columns),
            "strategy": self.strategy,
            "strategy_version": self.strategy_version,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldMapping":
        updated_at = DateTimeUtils.from_iso_string(data.get("updated_at") or "")
        return cls(
            user_id=data["user_id"],
            table_key=data["table_key"],
            content_type=ContentType(data["content_type"]),
            columns=dict(data.get("columns") or {}),
            strategy=data.get("strategy") or MAPPING_STRATEGY,
            strategy_version=data.get("strategy_version") or MAPPING_STRATEGY_VERSION,
            updated_at=updated_at or DateTimeUtils.now_utc(),
        )


@dataclass(frozen=True)
class FieldCreationError:
    """Fallo al crear la columna de un campo (no aborta el resolve)."""

    domain_name: str
    display_name: str
    message: str


@dataclass
class MappingResolution:
    """Resultado de resolve(): mapeo + detalle de lo que se hizo."""

    mapping: FieldMapping
    matched: List[str] = field(default_factory=list)
    created: List[str] = field(default_factory=list)
    errors: List[FieldCreationError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    from_cache: bool = False


@dataclass
class MappingPreview:
    """Dry-run del resolver: que columnas se reutilizan y cuales se crearian."""

    will_match: List[str] = field(default_factory=list)
    will_create: List[str] = field(default_factory=list)


@dataclass
class MappingValidation:
    """Comparacion de un mapeo persistido contra las columnas vivas."""

    is_valid: bool
    stale_columns: List[str] = field(default_factory=list)
    renamed_columns: Dict[str, str] = field(default_factory=dict)
    missing_required: List[str] = field(default_factory=list)


@dataclass
class ChangeSet:
    """
    Operaciones calculadas para un sync. Listas disjuntas por subject id.

    Transitorio: se recalcula en cada corrida y nunca se persiste.
    """

    to_create: List[DomainRecord] = field(default_factory=list)
    to_update: List[Tuple[DomainRecord, ExternalRecord]] = field(default_factory=list)
    to_delete: List[ExternalRecord] = field(default_factory=list)
    unchanged: List[DomainRecord] = field(default_factory=list)

    @property
    def total_operations(self) -> int:
        return len(self.to_create) + len(self.to_update) + len(self.to_delete)


@dataclass
class SyncOptions:
    """Opciones de una corrida de sync."""

    full_sync: bool = False
    delete_orphans: bool = False
    on_progress: Optional[ProgressCallback] = None


class BatchError(BaseModel):
    """Error de un lote (index = ordinal del lote dentro de su operacion)."""

    index: int
    message: str
    operation: str = ""


class BatchResult(BaseModel):
    """Resultado de una llamada batch contra Feishu."""

    success_count: int = 0
    failed_count: int = 0
    errors: List[BatchError] = Field(default_factory=list)


class SyncState(BaseModel):
    """Progreso de un sync en el cache rapido (TTL corto, no es auditoria)."""

    user_id: str
    target_key: str
    phase: SyncPhase
    processed_count: int = 0
    total_count: int = 0
    started_at: datetime
    updated_at: datetime

    @property
    def is_active(self) -> bool:
        return not self.phase.is_terminal


class RunSummary(BaseModel):
    """Resumen terminal de un sync; el caller lo persiste como historial."""

    total: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0
    failed: int = 0
    errors: List[BatchError] = Field(default_factory=list)
    created_records: List[Dict[str, str]] = Field(default_factory=list)
    updated_records: List[Dict[str, str]] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_ms: int = 0

    @computed_field
    @property
    def success(self) -> bool:
        return self.failed == 0
