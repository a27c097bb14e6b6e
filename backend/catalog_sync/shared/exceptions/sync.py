"""
Excepciones del motor de sincronizacion (configuracion, validacion, mapeo).
"""
from typing import Any, Dict, List, Optional

from catalog_sync.shared.exceptions.base import AppException


class SyncException(AppException):
    """Excepcion base para errores del motor de sync."""

    def __init__(
        self,
        message: str,
        error_code: str = "SYNC_ERROR",
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=status_code,
            error_code=error_code,
            details=details
        )


class SyncConfigurationError(SyncException):
    """Error de configuracion del target; aborta el sync antes del diff."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="SYNC_CONFIGURATION_ERROR",
            status_code=422,
            details=details
        )


class MissingRequiredMappingError(SyncConfigurationError):
    """Faltan columnas externas para campos obligatorios (p.ej. Subject ID)."""

    def __init__(self, table_key: str, missing_fields: List[str]):
        super().__init__(
            message=(
                f"Faltan mapeos obligatorios para la tabla {table_key}: "
                f"{', '.join(missing_fields)}"
            ),
            details={"table_key": table_key, "missing_fields": missing_fields}
        )
        self.error_code = "MISSING_REQUIRED_MAPPING"
        self.table_key = table_key
        self.missing_fields = missing_fields


class FieldMappingError(SyncException):
    """Mapeo de campos invalido (colision de columnas, tipo de contenido distinto...)."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="FIELD_MAPPING_ERROR",
            status_code=409,
            details=details
        )


class RecordValidationError(SyncException):
    """Un DomainRecord no supera la validacion de entrada."""

    def __init__(self, index: int, message: str, field: Optional[str] = None):
        details: Dict[str, Any] = {"index": index}
        if field:
            details["field"] = field
        super().__init__(
            message=f"Registro invalido en indice {index}: {message}",
            error_code="RECORD_VALIDATION_ERROR",
            status_code=422,
            details=details
        )
        self.index = index
        self.field = field


class SyncInProgressError(SyncException):
    """Ya existe una corrida activa (no expirada) para el mismo target."""

    def __init__(self, user_id: str, target_key: str, phase: str):
        super().__init__(
            message=f"Sync en curso para {target_key} (fase: {phase})",
            error_code="SYNC_IN_PROGRESS",
            status_code=409,
            details={"user_id": user_id, "target_key": target_key, "phase": phase}
        )
        self.target_key = target_key


class CacheUnavailableError(SyncException):
    """El cache rapido no respondio o devolvio un payload ilegible."""

    def __init__(self, operation: str, key: str, reason: str):
        super().__init__(
            message=f"Cache no disponible ({operation} {key}): {reason}",
            error_code="CACHE_UNAVAILABLE",
            status_code=503,
            details={"operation": operation, "key": key}
        )
