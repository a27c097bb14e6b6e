"""
Estado de progreso de un sync en el cache rapido.

Es un registro blando con TTL: sirve para consultar progreso y como
"busy flag" consultivo. No es historial: al expirar desaparece.
"""
from typing import Optional

from loguru import logger
from pydantic import ValidationError

from catalog_sync.domain.entities.sync_models import SyncState
from catalog_sync.infrastructure.cache.redis_cache import RedisCache
from catalog_sync.shared.constants.sync_constants import SyncPhase
from catalog_sync.shared.exceptions.sync import CacheUnavailableError
from catalog_sync.shared.utils.datetime_utils import DateTimeUtils


class SyncStateTracker:
    """
    Lectura/escritura de SyncState en `<prefix>:sync_state:<user>:<target>`.

    Los fallos de cache en `get` se tratan como "sin estado"; en escrituras
    se registran y se ignoran (el progreso no debe tumbar un sync).
    """

    def __init__(self, cache: RedisCache, ttl_seconds: int = 3600):
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    def _key(self, user_id: str, target_key: str) -> str:
        return self.cache.key("sync_state", user_id, target_key)

    async def begin(self, user_id: str, target_key: str, total: int) -> SyncState:
        """Inicia (o sobrescribe) el estado de un target."""
        now = DateTimeUtils.now_utc()
        state = SyncState(
            user_id=user_id,
            target_key=target_key,
            phase=SyncPhase.INITIALIZING,
            processed_count=0,
            total_count=total,
            started_at=now,
            updated_at=now,
        )
        await self._write(state)
        return state

    async def advance(
        self,
        user_id: str,
        target_key: str,
        delta: int,
        phase: SyncPhase,
        total: Optional[int] = None,
    ) -> Optional[SyncState]:
        """
        Suma `delta` al contador de procesados y fija la fase.

        Si no hay estado previo (expirado o cache caido) se crea uno nuevo.
        """
        state = await self.get(user_id, target_key)
        now = DateTimeUtils.now_utc()
        if state is None:
            state = SyncState(
                user_id=user_id,
                target_key=target_key,
                phase=phase,
                started_at=now,
                updated_at=now,
            )

        state.phase = SyncPhase(phase)
        state.processed_count = max(state.processed_count + delta, 0)
        if total is not None:
            state.total_count = total
        state.updated_at = now
        await self._write(state)
        return state

    async def get(self, user_id: str, target_key: str) -> Optional[SyncState]:
        """Estado actual o None (no existe, expiro, cache caido o payload ilegible)."""
        key = self._key(user_id, target_key)
        try:
            data = await self.cache.get_json(key)
        except CacheUnavailableError:
            return None
        if data is None:
            return None
        try:
            return SyncState.model_validate(data)
        except ValidationError as e:
            logger.warning(f"[sync-state] Estado ilegible en {key}: {e.error_count()} errores")
            return None

    async def _write(self, state: SyncState) -> None:
        key = self._key(state.user_id, state.target_key)
        try:
            await self.cache.set_json(key, state.model_dump(mode="json"), self.ttl_seconds)
        except CacheUnavailableError:
            logger.warning(f"[sync-state] No se pudo guardar estado de {key} (fase {state.phase.value})")
