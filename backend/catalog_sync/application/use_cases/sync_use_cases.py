"""
Casos de uso de sincronizacion Douban -> Feishu.

SyncEngine orquesta: validar registros -> busy check -> resolver mapeo ->
gate de campos obligatorios -> leer toda la tabla -> diff -> ejecutar.
El SyncState se actualiza en cada cambio de fase.
"""
from typing import Dict, List, Optional

import httpx
from loguru import logger
from redis import asyncio as aioredis
from sqlalchemy.ext.asyncio import async_sessionmaker

from catalog_sync.application.services.batch_executor import BatchSyncExecutor
from catalog_sync.application.services.change_detector import ChangeDetector
from catalog_sync.application.services.field_mapping_resolver import FieldMappingResolver
from catalog_sync.application.services.sync_state_tracker import SyncStateTracker
from catalog_sync.application.services.value_normalizer import (
    ValueNormalizer,
    extract_value,
    is_empty,
)
from catalog_sync.core.config import Settings
from catalog_sync.domain.entities.field_catalog import required_fields
from catalog_sync.domain.entities.sync_models import (
    DomainRecord,
    ExternalRecord,
    FeishuCredentials,
    FieldMapping,
    MappingPreview,
    RunSummary,
    SyncOptions,
    SyncState,
    TargetConfig,
)
from catalog_sync.infrastructure.cache.redis_cache import RedisCache
from catalog_sync.infrastructure.external.feishu.client import FeishuTableClient
from catalog_sync.shared.constants.sync_constants import ContentType, SUBJECT_ID_FIELD, SyncPhase
from catalog_sync.shared.exceptions.sync import (
    MissingRequiredMappingError,
    RecordValidationError,
    SyncInProgressError,
)
from catalog_sync.shared.utils.datetime_utils import DateTimeUtils


class SyncEngine:
    """
    Motor de sincronizacion incremental de un catalogo hacia una tabla Feishu.

    Todos los colaboradores se reciben por constructor (ver build_sync_engine).
    """

    def __init__(
        self,
        client: FeishuTableClient,
        resolver: FieldMappingResolver,
        detector: ChangeDetector,
        executor: BatchSyncExecutor,
        tracker: SyncStateTracker,
    ):
        self.client = client
        self.resolver = resolver
        self.detector = detector
        self.executor = executor
        self.tracker = tracker

    async def sync(
        self,
        user_id: str,
        target: TargetConfig,
        records: List[DomainRecord],
        options: Optional[SyncOptions] = None,
    ) -> RunSummary:
        """
        Ejecuta un sync completo de `records` hacia la tabla de `target`.

        Raises:
            RecordValidationError: registro invalido (antes de tocar Feishu)
            SyncInProgressError: ya hay un sync activo para el target
            MissingRequiredMappingError: falta la columna de un campo obligatorio
            FieldMappingError: el mapeo de la tabla no es utilizable
            RemoteApiError: fallo de red/credenciales al resolver o leer la tabla
        """
        options = options or SyncOptions()
        content_type = ContentType(target.content_type)
        table_key = target.table_key
        started_at = DateTimeUtils.now_utc()

        self.validate_records(records, content_type)

        current = await self.tracker.get(user_id, table_key)
        if current is not None and current.is_active:
            raise SyncInProgressError(user_id, table_key, current.phase.value)

        logger.info(
            f"[sync-engine] Inicio sync user={user_id} tabla={table_key} "
            f"tipo={content_type.value} registros={len(records)} "
            f"full_sync={options.full_sync} delete_orphans={options.delete_orphans}"
        )
        await self.tracker.begin(user_id, table_key, total=len(records))

        try:
            await self.tracker.advance(user_id, table_key, 0, SyncPhase.RESOLVING_MAPPING)
            resolution = await self.resolver.resolve(user_id, target.credentials, table_key, content_type)
            for error in resolution.errors:
                logger.warning(f"[sync-engine] Columna no creada '{error.display_name}': {error.message}")

            missing = self.resolver.missing_required(resolution.mapping)
            if missing:
                raise MissingRequiredMappingError(table_key, missing)

            await self.tracker.advance(user_id, table_key, 0, SyncPhase.FETCHING)
            existing = await self.fetch_existing(target, resolution.mapping)

            await self.tracker.advance(user_id, table_key, 0, SyncPhase.DIFFING)
            change_set = self.detector.diff(
                existing,
                records,
                resolution.mapping,
                full_sync=options.full_sync,
                delete_orphans=options.delete_orphans,
            )

            await self.tracker.advance(
                user_id, table_key, 0, SyncPhase.CREATING, total=change_set.total_operations
            )
            summary = await self.executor.execute(
                change_set,
                target.credentials,
                resolution.mapping,
                user_id=user_id,
                on_progress=options.on_progress,
            )
        except Exception:
            await self.tracker.advance(user_id, table_key, 0, SyncPhase.FAILED)
            logger.exception(f"[sync-engine] Sync fallido para {table_key}")
            raise

        summary.started_at = started_at
        summary.finished_at = DateTimeUtils.now_utc()
        summary.duration_ms = int((summary.finished_at - started_at).total_seconds() * 1000)
        await self.tracker.advance(user_id, table_key, 0, SyncPhase.COMPLETED)

        logger.info(
            f"[sync-engine] Sync {table_key} terminado: success={summary.success} "
            f"created={summary.created} updated={summary.updated} deleted={summary.deleted} "
            f"unchanged={summary.unchanged} failed={summary.failed} ({summary.duration_ms}ms)"
        )
        return summary

    async def get_run_state(self, user_id: str, target_key: str) -> Optional[SyncState]:
        """Estado del sync en curso (o del ultimo, si no expiro)."""
        return await self.tracker.get(user_id, target_key)

    async def preview_mapping(
        self,
        credentials: FeishuCredentials,
        table_key: str,
        content_type: ContentType,
    ) -> MappingPreview:
        """Dry-run del resolver para revision del operador."""
        return await self.resolver.preview(credentials, table_key, content_type)

    async def clear_mapping_cache(self, table_key: str) -> None:
        await self.resolver.clear_cache(table_key)

    async def fetch_existing(self, target: TargetConfig, mapping: FieldMapping) -> List[ExternalRecord]:
        """
        Lee todas las filas de la tabla con fields indexados por column_id.

        Feishu devuelve los fields por nombre de columna; se traducen con el
        listado vivo de columnas (claves que ya son column_id se conservan).
        """
        columns = await self.client.list_fields(target.credentials, target.table_id)
        # Nombres duplicados: gana la primera columna, igual que al emparejar el mapping
        id_by_name: Dict[str, str] = {}
        for column in columns:
            id_by_name.setdefault(column.display_name, column.column_id)

        existing: List[ExternalRecord] = []
        async for record in self.client.iter_records(target.credentials, target.table_id):
            record.fields = {id_by_name.get(key, key): value for key, value in record.fields.items()}
            existing.append(record)

        logger.info(f"[sync-engine] {len(existing)} filas leidas de {mapping.table_key}")
        return existing

    @staticmethod
    def validate_records(records: List[DomainRecord], content_type: ContentType) -> None:
        """
        Valida el snapshot completo antes del diff (fail-fast).

        Raises:
            RecordValidationError: con el indice del primer registro invalido
        """
        content_type = ContentType(content_type)
        required = [f for f in required_fields(content_type) if f.domain_name != SUBJECT_ID_FIELD]
        seen: Dict[str, int] = {}

        for index, record in enumerate(records):
            subject_id = "" if record.subject_id is None else str(record.subject_id).strip()
            if not subject_id:
                raise RecordValidationError(index, "subject_id vacio", field=SUBJECT_ID_FIELD)

            try:
                category = ContentType(record.category)
            except ValueError:
                raise RecordValidationError(
                    index, f"categoria desconocida '{record.category}'", field="category"
                ) from None
            if category != content_type:
                raise RecordValidationError(
                    index,
                    f"categoria '{category.value}' no coincide con la tabla ({content_type.value})",
                    field="category",
                )

            if subject_id in seen:
                raise RecordValidationError(
                    index,
                    f"subject_id {subject_id} repetido (ya aparece en indice {seen[subject_id]})",
                    field=SUBJECT_ID_FIELD,
                )
            seen[subject_id] = index

            for field in required:
                if is_empty(extract_value(record, field)):
                    raise RecordValidationError(
                        index, f"falta campo obligatorio '{field.domain_name}'", field=field.domain_name
                    )


def build_sync_engine(
    settings: Settings,
    http_client: httpx.AsyncClient,
    redis_client: aioredis.Redis,
    session_factory: async_sessionmaker,
) -> SyncEngine:
    """
    Cableado explicito del motor a partir de clientes creados al inicio
    del proceso (el caller es dueno de cerrarlos).
    """
    client = FeishuTableClient(
        http_client,
        page_size=settings.FEISHU_PAGE_SIZE,
        page_delay_s=settings.FEISHU_PAGE_DELAY_SECONDS,
        token_refresh_buffer_s=settings.FEISHU_TOKEN_REFRESH_BUFFER_SECONDS,
    )
    cache = RedisCache(redis_client, key_prefix=settings.CACHE_KEY_PREFIX)
    normalizer = ValueNormalizer()
    tracker = SyncStateTracker(cache, ttl_seconds=settings.SYNC_STATE_TTL_SECONDS)
    resolver = FieldMappingResolver(
        client,
        cache,
        session_factory,
        cache_ttl_seconds=settings.MAPPING_CACHE_TTL_SECONDS,
        creation_sub_batch_size=settings.FIELD_CREATION_SUB_BATCH_SIZE,
        creation_base_delay_s=settings.FIELD_CREATION_DELAY_SECONDS,
    )
    executor = BatchSyncExecutor(
        client,
        normalizer=normalizer,
        tracker=tracker,
        batch_size=settings.SYNC_WRITE_BATCH_SIZE,
        max_concurrent_batches=settings.SYNC_MAX_CONCURRENT_BATCHES,
        delete_delay_s=settings.SYNC_DELETE_DELAY_SECONDS,
    )
    return SyncEngine(
        client=client,
        resolver=resolver,
        detector=ChangeDetector(normalizer),
        executor=executor,
        tracker=tracker,
    )
