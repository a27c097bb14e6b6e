"""
Casos de uso de la aplicacion.
"""
from .sync_use_cases import SyncEngine, build_sync_engine

__all__ = ["SyncEngine", "build_sync_engine"]
