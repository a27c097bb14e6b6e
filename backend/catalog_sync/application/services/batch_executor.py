"""
Ejecutor de lotes: aplica un ChangeSet contra Feishu.

- Creates y updates en lotes de tamano fijo (max 500, default 100) con
  concurrencia acotada (default 3 lotes en vuelo).
- Deletes de a uno (no hay batch delete), con pausa entre llamadas.
- Un lote fallido cuenta `failed = tamano del lote` y se sigue con el resto.
- Sin reintentos internos: la politica de reintento es del caller.
"""
from __future__ import annotations

import asyncio
import inspect
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from catalog_sync.application.services.sync_state_tracker import SyncStateTracker
from catalog_sync.application.services.value_normalizer import ValueNormalizer
from catalog_sync.domain.entities.field_catalog import get_catalog
from catalog_sync.domain.entities.sync_models import (
    BatchError,
    BatchResult,
    ChangeSet,
    DomainRecord,
    ExternalRecord,
    FeishuCredentials,
    FieldMapping,
    ProgressCallback,
    RunSummary,
    split_table_key,
)
from catalog_sync.infrastructure.external.feishu.client import FeishuTableClient, MAX_BATCH_RECORDS
from catalog_sync.shared.constants.sync_constants import SyncPhase
from catalog_sync.shared.exceptions.remote import RemoteApiError
from catalog_sync.shared.utils.datetime_utils import DateTimeUtils


def chunked(items: Sequence[Any], size: int) -> List[List[Any]]:
    """Parte una secuencia en listas de a lo sumo `size` elementos."""
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class _RunProgress:
    """Contador compartido entre lotes concurrentes."""

    def __init__(
        self,
        total: int,
        on_progress: Optional[ProgressCallback],
        target_key: str,
        user_id: Optional[str],
    ):
        self.total = total
        self.target_key = target_key
        self.user_id = user_id
        self.current = 0
        self.on_progress = on_progress
        self.lock = asyncio.Lock()


class BatchSyncExecutor:
    """
    Aplica un ChangeSet y devuelve el RunSummary.

    Uso:
        executor = BatchSyncExecutor(client, tracker=tracker)
        summary = await executor.execute(change_set, credentials, mapping, user_id="u1")
    """

    def __init__(
        self,
        client: FeishuTableClient,
        *,
        normalizer: Optional[ValueNormalizer] = None,
        tracker: Optional[SyncStateTracker] = None,
        batch_size: int = 100,
        max_concurrent_batches: int = 3,
        delete_delay_s: float = 0.5,
    ):
        self.client = client
        self.normalizer = normalizer or ValueNormalizer()
        self.tracker = tracker
        self.batch_size = min(max(batch_size, 1), MAX_BATCH_RECORDS)
        self.max_concurrent_batches = max(max_concurrent_batches, 1)
        self.delete_delay_s = delete_delay_s

    async def execute(
        self,
        change_set: ChangeSet,
        credentials: FeishuCredentials,
        mapping: FieldMapping,
        *,
        user_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RunSummary:
        """
        Ejecuta creates, updates y deletes (en ese orden).

        Args:
            change_set: Operaciones calculadas por el ChangeDetector
            credentials: Credenciales Feishu
            mapping: Mapeo resuelto de la tabla
            user_id: Si se indica, se avanza el SyncState tras cada lote
            on_progress: Callback (current, total) tras cada lote

        Returns:
            RunSummary con conteos, errores y success = (failed == 0)
        """
        started_at = DateTimeUtils.now_utc()
        _, table_id = split_table_key(mapping.table_key)
        progress = _RunProgress(change_set.total_operations, on_progress, mapping.table_key, user_id)
        summary = RunSummary(
            total=change_set.total_operations + len(change_set.unchanged),
            unchanged=len(change_set.unchanged),
            started_at=started_at,
        )

        logger.info(
            f"[batch-executor] {mapping.table_key}: {len(change_set.to_create)} creates, "
            f"{len(change_set.to_update)} updates, {len(change_set.to_delete)} deletes "
            f"(lote={self.batch_size}, concurrencia={self.max_concurrent_batches})"
        )

        if change_set.to_create:
            results = await self._run_create_batches(
                change_set.to_create, credentials, table_id, mapping, progress
            )
            for result, created_records in results:
                summary.created += result.success_count
                summary.failed += result.failed_count
                summary.errors.extend(result.errors)
                summary.created_records.extend(created_records)

        if change_set.to_update:
            results = await self._run_update_batches(
                change_set.to_update, credentials, table_id, mapping, progress
            )
            for result, updated_records in results:
                summary.updated += result.success_count
                summary.failed += result.failed_count
                summary.errors.extend(result.errors)
                summary.updated_records.extend(updated_records)

        if change_set.to_delete:
            result = await self._run_deletes(change_set.to_delete, credentials, table_id, progress)
            summary.deleted += result.success_count
            summary.failed += result.failed_count
            summary.errors.extend(result.errors)

        summary.finished_at = DateTimeUtils.now_utc()
        summary.duration_ms = int((summary.finished_at - started_at).total_seconds() * 1000)
        log = logger.info if summary.success else logger.warning
        log(
            f"[batch-executor] {mapping.table_key} terminado en {summary.duration_ms}ms: "
            f"created={summary.created} updated={summary.updated} deleted={summary.deleted} "
            f"failed={summary.failed}"
        )
        return summary

    # ------------------------------------------------------------------
    # Creates / updates
    # ------------------------------------------------------------------

    async def _run_create_batches(
        self,
        records: List[DomainRecord],
        credentials: FeishuCredentials,
        table_id: str,
        mapping: FieldMapping,
        progress: _RunProgress,
    ) -> List[Tuple[BatchResult, List[Dict[str, str]]]]:
        catalog = get_catalog(mapping.content_type)
        semaphore = asyncio.Semaphore(self.max_concurrent_batches)

        async def run(index: int, batch: List[DomainRecord]) -> Tuple[BatchResult, List[Dict[str, str]]]:
            async with semaphore:
                payload = [self.normalizer.to_remote_fields(r, catalog, mapping) for r in batch]
                try:
                    record_ids = await self.client.batch_create_records(credentials, table_id, payload)
                except RemoteApiError as e:
                    result = self._failed_batch("create", index, len(batch), e)
                    details: List[Dict[str, str]] = []
                else:
                    result = BatchResult(success_count=len(batch))
                    details = [
                        {"subject_id": r.subject_id, "record_id": rid}
                        for r, rid in zip(batch, record_ids)
                    ]
                await self._report(progress, len(batch), SyncPhase.CREATING)
                return result, details

        batches = chunked(records, self.batch_size)
        return list(await asyncio.gather(*(run(i, b) for i, b in enumerate(batches))))

    async def _run_update_batches(
        self,
        pairs: List[Tuple[DomainRecord, ExternalRecord]],
        credentials: FeishuCredentials,
        table_id: str,
        mapping: FieldMapping,
        progress: _RunProgress,
    ) -> List[Tuple[BatchResult, List[Dict[str, str]]]]:
        catalog = get_catalog(mapping.content_type)
        semaphore = asyncio.Semaphore(self.max_concurrent_batches)

        async def run(
            index: int, batch: List[Tuple[DomainRecord, ExternalRecord]]
        ) -> Tuple[BatchResult, List[Dict[str, str]]]:
            async with semaphore:
                updates = [
                    (ext.record_id, self.normalizer.to_remote_fields(rec, catalog, mapping))
                    for rec, ext in batch
                ]
                try:
                    await self.client.batch_update_records(credentials, table_id, updates)
                except RemoteApiError as e:
                    result = self._failed_batch("update", index, len(batch), e)
                    details: List[Dict[str, str]] = []
                else:
                    result = BatchResult(success_count=len(batch))
                    details = [
                        {"subject_id": rec.subject_id, "record_id": ext.record_id}
                        for rec, ext in batch
                    ]
                await self._report(progress, len(batch), SyncPhase.UPDATING)
                return result, details

        batches = chunked(pairs, self.batch_size)
        return list(await asyncio.gather(*(run(i, b) for i, b in enumerate(batches))))

    # ------------------------------------------------------------------
    # Deletes
    # ------------------------------------------------------------------

    async def _run_deletes(
        self,
        records: List[ExternalRecord],
        credentials: FeishuCredentials,
        table_id: str,
        progress: _RunProgress,
    ) -> BatchResult:
        result = BatchResult()
        for index, record in enumerate(records):
            if index > 0 and self.delete_delay_s > 0:
                await asyncio.sleep(self.delete_delay_s)
            try:
                await self.client.delete_record(credentials, table_id, record.record_id)
                result.success_count += 1
            except RemoteApiError as e:
                failed = self._failed_batch("delete", index, 1, e)
                result.failed_count += failed.failed_count
                result.errors.extend(failed.errors)
            await self._report(progress, 1, SyncPhase.DELETING)
        return result

    # ------------------------------------------------------------------
    # Internos
    # ------------------------------------------------------------------

    @staticmethod
    def _failed_batch(operation: str, index: int, size: int, error: RemoteApiError) -> BatchResult:
        logger.error(f"[batch-executor] Lote {operation} #{index} ({size} registros) fallo: {error.message}")
        return BatchResult(
            failed_count=size,
            errors=[BatchError(
                index=index,
                operation=operation,
                message=f"{operation} lote #{index} ({size} registros): {error.message}",
            )],
        )

    async def _report(
        self,
        progress: _RunProgress,
        delta: int,
        phase: SyncPhase,
    ) -> None:
        """Avanza tracker y callback bajo un lock (los lotes corren en paralelo)."""
        async with progress.lock:
            progress.current += delta
            current = progress.current
            if self.tracker is not None and progress.user_id:
                await self.tracker.advance(progress.user_id, progress.target_key, delta, phase)
            if progress.on_progress is not None:
                try:
                    outcome = progress.on_progress(current, progress.total)
                    if inspect.isawaitable(outcome):
                        await outcome
                except Exception as e:
                    logger.warning(f"[batch-executor] on_progress fallo: {e}")
