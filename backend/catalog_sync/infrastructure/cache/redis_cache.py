"""
Cache rapido sobre Redis (redis.asyncio).

Guarda JSON con TTL. Cualquier fallo (conexion, payload ilegible) se
registra y se levanta como CacheUnavailableError; el caller decide si lo
trata como "miss" (resolver, tracker) o lo propaga.
"""
import json
from typing import Any, Optional

from loguru import logger
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from catalog_sync.core.config import Settings
from catalog_sync.shared.exceptions.sync import CacheUnavailableError


def create_redis_client(settings: Settings) -> aioredis.Redis:
    """Cliente Redis del proceso (el caller lo cierra con `aclose`)."""
    return aioredis.from_url(settings.REDIS_URL, decode_responses=True)


class RedisCache:
    """Wrapper JSON + TTL sobre un cliente redis.asyncio."""

    def __init__(self, client: aioredis.Redis, key_prefix: str = "feishu"):
        self.client = client
        self.key_prefix = key_prefix

    def key(self, *parts: str) -> str:
        """Construye una clave con el prefijo del motor: `prefix:part1:part2`."""
        return ":".join([self.key_prefix, *parts])

    async def get_json(self, key: str) -> Optional[Any]:
        """
        Lee y decodifica un valor JSON.

        Returns:
            El valor decodificado o None si la clave no existe

        Raises:
            CacheUnavailableError: si Redis falla o el payload no es JSON
        """
        try:
            raw = await self.client.get(key)
        except RedisError as e:
            logger.warning(f"[cache] GET {key} fallo: {e}")
            raise CacheUnavailableError("get", key, str(e)) from e

        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"[cache] Payload ilegible en {key}: {e}")
            raise CacheUnavailableError("decode", key, str(e)) from e

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Serializa `value` a JSON y lo guarda con TTL."""
        try:
            payload = json.dumps(value, ensure_ascii=False, default=str)
            await self.client.set(key, payload, ex=ttl_seconds)
        except RedisError as e:
            logger.warning(f"[cache] SET {key} fallo: {e}")
            raise CacheUnavailableError("set", key, str(e)) from e

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except RedisError as e:
            logger.warning(f"[cache] DEL {key} fallo: {e}")
            raise CacheUnavailableError("delete", key, str(e)) from e
