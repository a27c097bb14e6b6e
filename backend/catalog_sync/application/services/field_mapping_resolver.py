"""
Resolver de mapeo de campos: catalogo de dominio -> columnas Feishu.

Estrategia "exact_match_auto_create" (v2.0):
1. Cache rapido por tabla (30 min). En hit se validan tipo de contenido y
   campos obligatorios antes de devolverlo.
2. Mapeo persistido de (user_id, table_key).
3. Si falta o esta incompleto: se listan las columnas vivas, se reutilizan
   los column_id persistidos que siguen existiendo, se empareja el resto por
   nombre exacto y se encolan los campos sin columna.
4. Las columnas encoladas se crean en serie, en sub-lotes, con una pausa
   adaptativa entre sub-lotes (smart delay).
5. Se persiste y cachea el resultado.

Siempre se lista antes de crear: la creacion de columnas en Feishu no es
idempotente por nombre.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker

from catalog_sync.domain.entities.field_catalog import DomainField, get_catalog, required_fields
from catalog_sync.domain.entities.sync_models import (
    ExternalColumn,
    FeishuCredentials,
    FieldCreationError,
    FieldMapping,
    MappingPreview,
    MappingResolution,
    MappingValidation,
    split_table_key,
)
from catalog_sync.infrastructure.cache.redis_cache import RedisCache
from catalog_sync.infrastructure.database.session import session_scope
from catalog_sync.infrastructure.external.feishu.client import FeishuTableClient
from catalog_sync.infrastructure.external.feishu.field_templates import (
    build_column_template,
    expected_type_code,
)
from catalog_sync.infrastructure.repositories.field_mapping_repository import FieldMappingRepository
from catalog_sync.shared.constants.sync_constants import (
    ContentType,
    MAPPING_STRATEGY,
    MAPPING_STRATEGY_VERSION,
)
from catalog_sync.shared.exceptions.remote import RemoteRequestError
from catalog_sync.shared.exceptions.sync import CacheUnavailableError, FieldMappingError
from catalog_sync.shared.utils.datetime_utils import DateTimeUtils


MANUAL_STRATEGY = "manual"


def compute_smart_delay(queue_size: int, base_delay_s: float) -> float:
    """
    Pausa entre sub-lotes de creacion de columnas segun el tamano de la cola.

    1-2 campos no esperan; colas mas largas esperan mas para no chocar con
    el limite de tasa de los endpoints de esquema.
    """
    if queue_size <= 2:
        return 0.0
    if queue_size <= 5:
        return base_delay_s * 0.5
    if queue_size <= 10:
        return base_delay_s
    return base_delay_s * 2


class FieldMappingResolver:
    """
    Resuelve, persiste y cachea el FieldMapping de una tabla.

    Colaboradores explicitos: cliente Feishu, cache Redis y session factory
    de la base de datos.
    """

    CACHE_NAMESPACE = "mappings_v2"

    def __init__(
        self,
        client: FeishuTableClient,
        cache: RedisCache,
        session_factory: async_sessionmaker,
        *,
        cache_ttl_seconds: int = 1800,
        creation_sub_batch_size: int = 5,
        creation_base_delay_s: float = 1.0,
    ):
        self.client = client
        self.cache = cache
        self.session_factory = session_factory
        self.cache_ttl_seconds = cache_ttl_seconds
        self.creation_sub_batch_size = max(creation_sub_batch_size, 1)
        self.creation_base_delay_s = creation_base_delay_s

    # ------------------------------------------------------------------
    # Resolve
    # ------------------------------------------------------------------

    async def resolve(
        self,
        user_id: str,
        credentials: FeishuCredentials,
        table_key: str,
        content_type: ContentType,
    ) -> MappingResolution:
        """
        Obtiene el mapeo de la tabla, creando las columnas que falten.

        Returns:
            MappingResolution (mapping + matched + created + errors + warnings)

        Raises:
            FieldMappingError: tipo de contenido distinto o colision de columnas
            RemoteAuthError / RemoteTransportError: fallos de red o credenciales
        """
        content_type = ContentType(content_type)

        cached = await self._read_cache(table_key)
        if cached is not None:
            self._check_content_type(cached, content_type)
            if not self.missing_required(cached):
                logger.debug(f"[field-mapping] Cache hit para {table_key}")
                return MappingResolution(
                    mapping=cached, matched=list(cached.columns), from_cache=True
                )
            logger.info(f"[field-mapping] Mapeo en cache incompleto para {table_key}, re-resolviendo")

        persisted = await self._load(user_id, table_key)
        if persisted is not None:
            self._check_content_type(persisted, content_type)
            if self._is_complete(persisted):
                await self._write_cache(persisted)
                return MappingResolution(mapping=persisted, matched=list(persisted.columns))

        return await self._resolve_live(user_id, credentials, table_key, content_type, persisted)

    async def _resolve_live(
        self,
        user_id: str,
        credentials: FeishuCredentials,
        table_key: str,
        content_type: ContentType,
        persisted: Optional[FieldMapping],
    ) -> MappingResolution:
        _, table_id = split_table_key(table_key)
        catalog = get_catalog(content_type)
        live_columns = await self.client.list_fields(credentials, table_id)

        columns, matched, queued, warnings = self._match_columns(
            catalog, live_columns, persisted.columns if persisted else {}
        )

        logger.info(
            f"[field-mapping] {table_key} ({content_type.value}): "
            f"{len(matched)} emparejados, {len(queued)} por crear"
        )

        created, errors = await self._create_columns(credentials, table_id, queued)
        for field, column in created:
            columns[field.domain_name] = column.column_id

        mapping = FieldMapping(
            user_id=user_id,
            table_key=table_key,
            content_type=content_type,
            columns=columns,
            strategy=MAPPING_STRATEGY,
            strategy_version=MAPPING_STRATEGY_VERSION,
            updated_at=DateTimeUtils.now_utc(),
        )
        await self._save(mapping)
        await self._write_cache(mapping)

        return MappingResolution(
            mapping=mapping,
            matched=matched,
            created=[field.domain_name for field, _ in created],
            errors=errors,
            warnings=warnings,
        )

    def _match_columns(
        self,
        catalog: Tuple[DomainField, ...],
        live_columns: List[ExternalColumn],
        previous: Dict[str, str],
    ) -> Tuple[Dict[str, str], List[str], List[DomainField], List[str]]:
        """
        Empareja el catalogo contra las columnas vivas.

        Returns:
            (columns, matched, queued, warnings)
        """
        by_id = {c.column_id: c for c in live_columns}
        by_name: Dict[str, ExternalColumn] = {}
        warnings: List[str] = []
        for column in live_columns:
            if column.display_name in by_name:
                warnings.append(
                    f"Columna duplicada '{column.display_name}' "
                    f"({by_name[column.display_name].column_id}, {column.column_id}); se usa la primera"
                )
                continue
            by_name[column.display_name] = column

        columns: Dict[str, str] = {}
        owners: Dict[str, str] = {}
        matched: List[str] = []
        queued: List[DomainField] = []

        for field in catalog:
            column = by_id.get(previous.get(field.domain_name, "")) or by_name.get(field.display_name)
            if column is None:
                queued.append(field)
                continue

            if column.column_id in owners:
                raise FieldMappingError(
                    f"Colision de columnas: '{field.domain_name}' y '{owners[column.column_id]}' "
                    f"resuelven a la misma columna '{column.display_name}'",
                    details={
                        "column_id": column.column_id,
                        "fields": [owners[column.column_id], field.domain_name],
                    },
                )
            owners[column.column_id] = field.domain_name
            columns[field.domain_name] = column.column_id
            matched.append(field.domain_name)

            expected = expected_type_code(field.data_kind)
            if column.type_code != expected:
                warnings.append(
                    f"Columna '{column.display_name}' tiene tipo {column.type_code}, "
                    f"se esperaba {expected} para '{field.domain_name}'"
                )

        for warning in warnings:
            logger.warning(f"[field-mapping] {warning}")
        return columns, matched, queued, warnings

    async def _create_columns(
        self,
        credentials: FeishuCredentials,
        table_id: str,
        queued: List[DomainField],
    ) -> Tuple[List[Tuple[DomainField, ExternalColumn]], List[FieldCreationError]]:
        """
        Crea columnas en serie, por sub-lotes, con smart delay entre sub-lotes.

        Un fallo de la API para un campo se registra y se sigue con el resto;
        errores de autenticacion o de red se propagan.
        """
        created: List[Tuple[DomainField, ExternalColumn]] = []
        errors: List[FieldCreationError] = []
        if not queued:
            return created, errors

        delay = compute_smart_delay(len(queued), self.creation_base_delay_s)
        size = self.creation_sub_batch_size
        sub_batches = [queued[i:i + size] for i in range(0, len(queued), size)]

        for number, sub_batch in enumerate(sub_batches):
            if number > 0 and delay > 0:
                logger.debug(f"[field-mapping] Pausa de {delay:.1f}s antes del sub-lote {number + 1}")
                await asyncio.sleep(delay)

            for field in sub_batch:
                try:
                    column = await self.client.create_field(
                        credentials, table_id, build_column_template(field)
                    )
                except RemoteRequestError as e:
                    logger.error(f"[field-mapping] No se pudo crear '{field.display_name}': {e.message}")
                    errors.append(FieldCreationError(field.domain_name, field.display_name, e.message))
                    continue
                created.append((field, column))

        logger.info(f"[field-mapping] Columnas creadas: {len(created)}, fallidas: {len(errors)}")
        return created, errors

    # ------------------------------------------------------------------
    # Operaciones auxiliares
    # ------------------------------------------------------------------

    async def preview(
        self,
        credentials: FeishuCredentials,
        table_key: str,
        content_type: ContentType,
    ) -> MappingPreview:
        """Dry-run: que columnas se reutilizarian y cuales se crearian. Sin escrituras."""
        _, table_id = split_table_key(table_key)
        live_names = {c.display_name for c in await self.client.list_fields(credentials, table_id)}
        preview = MappingPreview()
        for field in get_catalog(ContentType(content_type)):
            if field.display_name in live_names:
                preview.will_match.append(field.display_name)
            else:
                preview.will_create.append(field.display_name)
        return preview

    async def clear_cache(self, table_key: str) -> None:
        """Invalida el mapeo cacheado de una tabla (el persistido se conserva)."""
        try:
            await self.cache.delete(self._cache_key(table_key))
            logger.info(f"[field-mapping] Cache invalidado para {table_key}")
        except CacheUnavailableError:
            logger.warning(f"[field-mapping] No se pudo invalidar cache de {table_key}")

    async def reset_mapping(self, user_id: str, table_key: str) -> bool:
        """Borra el mapeo persistido y cacheado (reset explicito del usuario)."""
        async with session_scope(self.session_factory) as session:
            deleted = await FieldMappingRepository(session).delete(user_id, table_key)
        await self.clear_cache(table_key)
        logger.info(f"[field-mapping] Reset de mapeo {table_key} (user={user_id}, existia={deleted})")
        return deleted

    async def set_mapping(
        self,
        user_id: str,
        table_key: str,
        content_type: ContentType,
        columns: Dict[str, str],
    ) -> FieldMapping:
        """
        Guarda un mapeo manual validado contra el catalogo.

        Raises:
            FieldMappingError: campos desconocidos, obligatorios ausentes o
                column_id repetidos
        """
        content_type = ContentType(content_type)
        split_table_key(table_key)
        known = {f.domain_name for f in get_catalog(content_type)}

        unknown = sorted(name for name in columns if name not in known)
        if unknown:
            raise FieldMappingError(
                f"Campos desconocidos para {content_type.value}: {', '.join(unknown)}",
                details={"unknown_fields": unknown},
            )

        missing = [f.domain_name for f in required_fields(content_type) if not columns.get(f.domain_name)]
        if missing:
            raise FieldMappingError(
                f"Faltan campos obligatorios: {', '.join(missing)}",
                details={"missing_fields": missing},
            )

        seen: Dict[str, str] = {}
        for domain_name, column_id in columns.items():
            if column_id in seen:
                raise FieldMappingError(
                    f"La columna {column_id} esta asignada a '{seen[column_id]}' y '{domain_name}'",
                    details={"column_id": column_id},
                )
            seen[column_id] = domain_name

        mapping = FieldMapping(
            user_id=user_id,
            table_key=table_key,
            content_type=content_type,
            columns=dict(columns),
            strategy=MANUAL_STRATEGY,
            strategy_version=MAPPING_STRATEGY_VERSION,
            updated_at=DateTimeUtils.now_utc(),
        )
        await self._save(mapping)
        await self._write_cache(mapping)
        return mapping

    async def validate_mapping(
        self,
        user_id: str,
        credentials: FeishuCredentials,
        table_key: str,
    ) -> MappingValidation:
        """
        Compara el mapeo persistido con las columnas vivas.

        - stale_columns: campos cuyo column_id ya no existe
        - renamed_columns: campo -> nombre actual, si difiere del catalogo
        """
        mapping = await self._load(user_id, table_key)
        if mapping is None:
            raise FieldMappingError(
                f"No hay mapeo persistido para {table_key}",
                details={"table_key": table_key},
            )

        _, table_id = split_table_key(table_key)
        live = {c.column_id: c for c in await self.client.list_fields(credentials, table_id)}
        catalog = {f.domain_name: f for f in get_catalog(mapping.content_type)}

        validation = MappingValidation(is_valid=True)
        for domain_name, column_id in mapping.columns.items():
            column = live.get(column_id)
            if column is None:
                validation.stale_columns.append(domain_name)
                continue
            field = catalog.get(domain_name)
            if field and column.display_name != field.display_name:
                validation.renamed_columns[domain_name] = column.display_name

        stale = set(validation.stale_columns)
        validation.missing_required = [
            f.domain_name for f in required_fields(mapping.content_type)
            if not mapping.column_for(f.domain_name) or f.domain_name in stale
        ]
        validation.is_valid = not validation.stale_columns and not validation.missing_required
        return validation

    async def get_mapping_stats(self, user_id: str) -> Dict[str, Any]:
        """Resumen de los mapeos de un usuario."""
        async with session_scope(self.session_factory) as session:
            mappings = await FieldMappingRepository(session).list_by_user(user_id)

        by_type: Dict[str, int] = {}
        by_version: Dict[str, int] = {}
        for mapping in mappings:
            ct = ContentType(mapping.content_type).value
            by_type[ct] = by_type.get(ct, 0) + 1
            by_version[mapping.strategy_version] = by_version.get(mapping.strategy_version, 0) + 1

        last_updated = max((m.updated_at for m in mappings), default=None)
        return {
            "total_tables": len(mappings),
            "content_types": by_type,
            "strategy_versions": by_version,
            "field_counts": {m.table_key: len(m.columns) for m in mappings},
            "last_updated": last_updated.isoformat() if last_updated else None,
        }

    @staticmethod
    def missing_required(mapping: FieldMapping) -> List[str]:
        """domain_names obligatorios sin columna en el mapeo."""
        return [
            f.domain_name for f in required_fields(mapping.content_type)
            if not mapping.column_for(f.domain_name)
        ]

    # ------------------------------------------------------------------
    # Internos
    # ------------------------------------------------------------------

    def _cache_key(self, table_key: str) -> str:
        return self.cache.key(self.CACHE_NAMESPACE, table_key)

    def _is_complete(self, mapping: FieldMapping) -> bool:
        if mapping.strategy == MANUAL_STRATEGY:
            return not self.missing_required(mapping)
        if mapping.strategy_version != MAPPING_STRATEGY_VERSION:
            return False
        return all(mapping.column_for(f.domain_name) for f in get_catalog(mapping.content_type))

    @staticmethod
    def _check_content_type(mapping: FieldMapping, content_type: ContentType) -> None:
        if ContentType(mapping.content_type) != content_type:
            raise FieldMappingError(
                f"La tabla {mapping.table_key} esta mapeada como "
                f"{ContentType(mapping.content_type).value}, no como {content_type.value}",
                details={"table_key": mapping.table_key},
            )

    async def _read_cache(self, table_key: str) -> Optional[FieldMapping]:
        key = self._cache_key(table_key)
        try:
            data = await self.cache.get_json(key)
        except CacheUnavailableError:
            return None
        if data is None:
            return None
        try:
            return FieldMapping.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"[field-mapping] Mapeo cacheado ilegible en {key}: {e}")
            return None

    async def _write_cache(self, mapping: FieldMapping) -> None:
        try:
            await self.cache.set_json(
                self._cache_key(mapping.table_key), mapping.to_dict(), self.cache_ttl_seconds
            )
        except CacheUnavailableError:
            logger.warning(f"[field-mapping] No se pudo cachear mapeo de {mapping.table_key}")

    async def _load(self, user_id: str, table_key: str) -> Optional[FieldMapping]:
        async with session_scope(self.session_factory) as session:
            return await FieldMappingRepository(session).get(user_id, table_key)

    async def _save(self, mapping: FieldMapping) -> None:
        async with session_scope(self.session_factory) as session:
            await FieldMappingRepository(session).save(mapping)
