"""
Constantes del motor de sincronizacion.
Define tipos de contenido, tipos de dato de campo y fases de sync.
"""
from enum import Enum


class ContentType(str, Enum):
    """Tipos de contenido soportados (uno por tabla externa)."""
    BOOKS = "books"
    MOVIES = "movies"
    TV = "tv"
    DOCUMENTARY = "documentary"


class DataKind(str, Enum):
    """Tipo de dato abstracto de un campo de dominio."""
    TEXT = "text"
    NUMBER = "number"
    RATING = "rating"
    DATE = "date"
    SINGLE_SELECT = "single_select"
    URL = "url"


class SyncPhase(str, Enum):
    """Fases de una corrida de sync (se publican en el SyncState)."""
    INITIALIZING = "initializing"
    RESOLVING_MAPPING = "resolving_mapping"
    FETCHING = "fetching"
    DIFFING = "diffing"
    CREATING = "creating"
    UPDATING = "updating"
    DELETING = "deleting"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Una fase terminal no bloquea nuevas corridas."""
        return self in (SyncPhase.COMPLETED, SyncPhase.FAILED)


# Clave de dominio del identificador natural (join key Douban <-> Feishu)
SUBJECT_ID_FIELD = "subjectId"

# Estrategia de mapeo vigente (se guarda junto al mapeo persistido)
MAPPING_STRATEGY = "exact_match_auto_create"
MAPPING_STRATEGY_VERSION = "2.0"
