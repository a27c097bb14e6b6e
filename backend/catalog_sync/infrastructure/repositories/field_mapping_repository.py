"""
Implementación del repositorio de mapeos de campos.
Maneja las operaciones de base de datos para FieldMappingModel y
devuelve entidades FieldMapping del dominio.
"""
from typing import List, Optional

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.domain.entities.sync_models import FieldMapping
from catalog_sync.infrastructure.database.models import FieldMappingModel
from catalog_sync.shared.constants.sync_constants import ContentType
from catalog_sync.shared.utils.datetime_utils import DateTimeUtils


class FieldMappingRepository:
    """Repositorio para gestionar mapeos de campos en la base de datos."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_model(self, user_id: str, table_key: str) -> Optional[FieldMappingModel]:
        result = await self.db.execute(
            select(FieldMappingModel).where(
                FieldMappingModel.user_id == user_id,
                FieldMappingModel.table_key == table_key,
            )
        )
        return result.scalars().first()

    async def get(self, user_id: str, table_key: str) -> Optional[FieldMapping]:
        """
        Obtiene el mapeo persistido de una tabla.

        Returns:
            FieldMapping o None si no existe
        """
        model = await self._get_model(user_id, table_key)
        return self._to_entity(model) if model else None

    async def save(self, mapping: FieldMapping) -> FieldMapping:
        """
        Crea o actualiza (upsert por user_id + table_key) un mapeo.
        """
        model = await self._get_model(mapping.user_id, mapping.table_key)
        content_type = ContentType(mapping.content_type).value

        if model:
            model.content_type = content_type
            model.columns = dict(mapping.columns)
            model.strategy = mapping.strategy
            model.strategy_version = mapping.strategy_version
            model.updated_at = mapping.updated_at
        else:
            model = FieldMappingModel(
                user_id=mapping.user_id,
                table_key=mapping.table_key,
                content_type=content_type,
                columns=dict(mapping.columns),
                strategy=mapping.strategy,
                strategy_version=mapping.strategy_version,
                updated_at=mapping.updated_at,
            )
            self.db.add(model)

        await self.db.flush()
        logger.info(
            f"[field-mapping] Mapeo guardado: user={mapping.user_id} tabla={mapping.table_key} "
            f"({len(mapping.columns)} campos)"
        )
        return mapping

    async def delete(self, user_id: str, table_key: str) -> bool:
        """
        Elimina el mapeo de una tabla (reset explicito del usuario).

        Returns:
            True si habia un mapeo que borrar
        """
        result = await self.db.execute(
            delete(FieldMappingModel).where(
                FieldMappingModel.user_id == user_id,
                FieldMappingModel.table_key == table_key,
            )
        )
        await self.db.flush()
        return (result.rowcount or 0) > 0

    async def list_by_user(self, user_id: str) -> List[FieldMapping]:
        """Todos los mapeos de un usuario, ordenados por tabla."""
        result = await self.db.execute(
            select(FieldMappingModel)
            .where(FieldMappingModel.user_id == user_id)
            .order_by(FieldMappingModel.table_key)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    @staticmethod
    def _to_entity(model: FieldMappingModel) -> FieldMapping:
        updated_at = model.updated_at or model.created_at or DateTimeUtils.now_utc()
        return FieldMapping(
            user_id=model.user_id,
            table_key=model.table_key,
            content_type=ContentType(model.content_type),
            columns=dict(model.columns or {}),
            strategy=model.strategy,
            strategy_version=model.strategy_version,
            updated_at=DateTimeUtils.ensure_utc(updated_at),
        )
