"""
Servicios de aplicacion.

Contiene la logica del motor de sync reutilizable por los casos de uso:
normalizacion de valores, resolucion de mapeos, deteccion de cambios,
ejecucion por lotes y estado de progreso.
"""
from catalog_sync.application.services.value_normalizer import ValueNormalizer
from catalog_sync.application.services.change_detector import ChangeDetector
from catalog_sync.application.services.field_mapping_resolver import (
    FieldMappingResolver,
    compute_smart_delay,
)
from catalog_sync.application.services.batch_executor import BatchSyncExecutor
from catalog_sync.application.services.sync_state_tracker import SyncStateTracker

__all__ = [
    # Valores y hash
    "ValueNormalizer",
    "ChangeDetector",
    # Mapeo de campos
    "FieldMappingResolver",
    "compute_smart_delay",
    # Escritura y progreso
    "BatchSyncExecutor",
    "SyncStateTracker",
]
