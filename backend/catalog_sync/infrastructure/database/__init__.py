"""
Configuración de base de datos.

Importa todos los modelos para que se registren con Base
antes de crear las tablas.
"""
from catalog_sync.infrastructure.database.models import FieldMappingModel

__all__ = ["FieldMappingModel"]
