"""
Entidades del dominio.
"""
from catalog_sync.domain.entities.field_catalog import DomainField, get_catalog, get_field, required_fields
from catalog_sync.domain.entities.sync_models import (
    ChangeSet,
    DomainRecord,
    ExternalColumn,
    ExternalRecord,
    FeishuCredentials,
    FieldMapping,
    RunSummary,
    SyncOptions,
    SyncState,
    TargetConfig,
)

__all__ = [
    "DomainField",
    "get_catalog",
    "get_field",
    "required_fields",
    "ChangeSet",
    "DomainRecord",
    "ExternalColumn",
    "ExternalRecord",
    "FeishuCredentials",
    "FieldMapping",
    "RunSummary",
    "SyncOptions",
    "SyncState",
    "TargetConfig",
]
