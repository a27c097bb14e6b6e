"""
Cliente async de Feishu Bitable (open API) sobre httpx.

Cubre:
- tenant_access_token con cache en proceso (se renueva 5 min antes de expirar)
- listado y creacion de columnas (fields)
- busqueda paginada de registros (page_token / has_more)
- batch_create / batch_update (maximo 500 registros por llamada) y delete

No reintenta: cada error se traduce a la jerarquia RemoteApiError y sube
al caller. Los reintentos de conexion, si se configuran, viven en el
transporte httpx (ver create_http_client).
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import httpx
from loguru import logger

from catalog_sync.core.config import Settings
from catalog_sync.core.logging_setup import mask_secret
from catalog_sync.domain.entities.sync_models import (
    ExternalColumn,
    ExternalRecord,
    FeishuCredentials,
)
from catalog_sync.shared.exceptions.remote import (
    RemoteAuthError,
    RemoteRequestError,
    RemoteTransportError,
)


TOKEN_PATH = "/open-apis/auth/v3/tenant_access_token/internal"
TABLE_PATH = "/open-apis/bitable/v1/apps/{app_token}/tables/{table_id}"

# Limite de registros por llamada batch de Feishu
MAX_BATCH_RECORDS = 500

# Codigos de payload que indican token/credenciales invalidas
AUTH_ERROR_CODES = frozenset({99991661, 99991663, 99991664, 99991665, 99991668})
# Limite de tasa excedido
RATE_LIMIT_CODE = 1254


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    """
    Construye el httpx.AsyncClient compartido por el proceso.

    El caller es dueno del cliente (debe cerrarlo con `aclose`).
    """
    transport = httpx.AsyncHTTPTransport(retries=settings.FEISHU_CONNECT_RETRIES)
    return httpx.AsyncClient(
        base_url=settings.FEISHU_BASE_URL,
        timeout=httpx.Timeout(settings.FEISHU_TIMEOUT_SECONDS),
        transport=transport,
        headers={"Content-Type": "application/json; charset=utf-8"},
    )


class FeishuTableClient:
    """
    Operaciones de tabla Bitable para un conjunto de credenciales.

    Importante:
    - Los registros de search llegan con fields indexados por nombre de
      columna; la conversion a column_id la hace el motor.
    - Las escrituras (batch_create / batch_update) aceptan column_id como clave.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        page_size: int = 500,
        page_delay_s: float = 0.0,
        token_refresh_buffer_s: int = 300,
    ) -> None:
        self._http = http_client
        self._page_size = min(max(page_size, 1), MAX_BATCH_RECORDS)
        self._page_delay_s = page_delay_s
        self._refresh_buffer_s = token_refresh_buffer_s
        # app_id -> (token, expira_en segun time.monotonic)
        self._tokens: Dict[str, Tuple[str, float]] = {}
        self._token_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Autenticacion
    # ------------------------------------------------------------------

    async def get_tenant_token(self, credentials: FeishuCredentials) -> str:
        """
        Obtiene el tenant_access_token (cacheado hasta expire - buffer).

        Raises:
            RemoteAuthError: si Feishu rechaza app_id / app_secret
        """
        cached = self._tokens.get(credentials.app_id)
        if cached and cached[1] > time.monotonic():
            return cached[0]

        async with self._token_lock:
            cached = self._tokens.get(credentials.app_id)
            if cached and cached[1] > time.monotonic():
                return cached[0]

            logger.debug(f"[feishu] Solicitando tenant token para app {mask_secret(credentials.app_id)}")
            response = await self._send(
                "POST",
                TOKEN_PATH,
                json={"app_id": credentials.app_id, "app_secret": credentials.app_secret},
            )
            payload = self._decode(response)
            code = payload.get("code", -1)
            token = payload.get("tenant_access_token")
            if code != 0 or not token:
                raise RemoteAuthError(
                    f"No se pudo obtener tenant token: [{code}] {payload.get('msg', '')}",
                    http_status=response.status_code,
                    api_code=code,
                )

            expire_s = int(payload.get("expire") or 7200)
            ttl = max(expire_s - self._refresh_buffer_s, 0)
            self._tokens[credentials.app_id] = (token, time.monotonic() + ttl)
            logger.info(f"[feishu] Tenant token obtenido (expira en {expire_s}s)")
            return token

    def invalidate_token(self, app_id: str) -> None:
        """Descarta el token cacheado de una app."""
        self._tokens.pop(app_id, None)

    # ------------------------------------------------------------------
    # Columnas
    # ------------------------------------------------------------------

    async def list_fields(self, credentials: FeishuCredentials, table_id: str) -> List[ExternalColumn]:
        """Lista todas las columnas de la tabla (recorre todas las paginas)."""
        path = self._table_path(credentials, table_id) + "/fields"
        columns: List[ExternalColumn] = []
        page_token: Optional[str] = None

        while True:
            params: Dict[str, Any] = {"page_size": 100}
            if page_token:
                params["page_token"] = page_token
            data = await self._request(credentials, "GET", path, params=params)

            for item in data.get("items") or []:
                columns.append(self._to_column(item))

            page_token = data.get("page_token")
            if not data.get("has_more") or not page_token:
                break

        logger.debug(f"[feishu] {len(columns)} columnas en tabla {table_id}")
        return columns

    async def create_field(
        self,
        credentials: FeishuCredentials,
        table_id: str,
        template: Dict[str, Any],
    ) -> ExternalColumn:
        """
        Crea una columna. NO es idempotente por nombre: crear un nombre
        existente produce una segunda columna distinta.
        """
        path = self._table_path(credentials, table_id) + "/fields"
        data = await self._request(credentials, "POST", path, json=template)
        item = data.get("field") or data
        column = self._to_column(item)
        logger.info(f"[feishu] Columna creada: '{column.display_name}' ({column.column_id})")
        return column

    # ------------------------------------------------------------------
    # Registros
    # ------------------------------------------------------------------

    async def iter_records(
        self,
        credentials: FeishuCredentials,
        table_id: str,
        *,
        field_names: Optional[Sequence[str]] = None,
    ) -> AsyncIterator[ExternalRecord]:
        """
        Itera todos los registros via records/search (paginacion por page_token).

        Entre paginas se respeta `page_delay_s` para no agotar el limite de tasa.
        """
        path = self._table_path(credentials, table_id) + "/records/search"
        page_token: Optional[str] = None
        body: Dict[str, Any] = {"automatic_fields": False}
        if field_names:
            body["field_names"] = list(field_names)

        while True:
            params: Dict[str, Any] = {"page_size": self._page_size}
            if page_token:
                params["page_token"] = page_token
            data = await self._request(credentials, "POST", path, params=params, json=body)

            for item in data.get("items") or []:
                record_id = item.get("record_id")
                if not record_id:
                    raise RemoteRequestError("Feishu devolvio un registro sin 'record_id'")
                yield ExternalRecord(record_id=record_id, fields=dict(item.get("fields") or {}))

            page_token = data.get("page_token")
            if not data.get("has_more") or not page_token:
                break
            if self._page_delay_s > 0:
                await asyncio.sleep(self._page_delay_s)

    async def batch_create_records(
        self,
        credentials: FeishuCredentials,
        table_id: str,
        records: List[Dict[str, Any]],
    ) -> List[str]:
        """
        Crea registros en una sola llamada.

        Args:
            records: Lista de dicts `column_id -> valor`

        Returns:
            record_ids asignados por Feishu, en el mismo orden
        """
        self._check_batch_size(len(records))
        path = self._table_path(credentials, table_id) + "/records/batch_create"
        data = await self._request(
            credentials, "POST", path, json={"records": [{"fields": f} for f in records]}
        )
        return [item.get("record_id", "") for item in data.get("records") or []]

    async def batch_update_records(
        self,
        credentials: FeishuCredentials,
        table_id: str,
        updates: List[Tuple[str, Dict[str, Any]]],
    ) -> int:
        """
        Actualiza registros en una sola llamada.

        Args:
            updates: Lista de (record_id, fields)

        Returns:
            Cantidad de registros actualizados
        """
        self._check_batch_size(len(updates))
        path = self._table_path(credentials, table_id) + "/records/batch_update"
        payload = {"records": [{"record_id": rid, "fields": f} for rid, f in updates]}
        data = await self._request(credentials, "POST", path, json=payload)
        return len(data.get("records") or updates)

    async def delete_record(self, credentials: FeishuCredentials, table_id: str, record_id: str) -> None:
        """Borra un registro (Feishu no ofrece batch delete en este flujo)."""
        path = self._table_path(credentials, table_id) + f"/records/{record_id}"
        await self._request(credentials, "DELETE", path)

    # ------------------------------------------------------------------
    # Internos
    # ------------------------------------------------------------------

    @staticmethod
    def _table_path(credentials: FeishuCredentials, table_id: str) -> str:
        return TABLE_PATH.format(app_token=credentials.app_token, table_id=table_id)

    @staticmethod
    def _check_batch_size(size: int) -> None:
        if size > MAX_BATCH_RECORDS:
            raise ValueError(f"Lote de {size} registros excede el maximo de {MAX_BATCH_RECORDS}")

    @staticmethod
    def _to_column(item: Dict[str, Any]) -> ExternalColumn:
        return ExternalColumn(
            column_id=item.get("field_id", ""),
            display_name=item.get("field_name", ""),
            type_code=int(item.get("type") or 0),
            ui_type=item.get("ui_type"),
            properties=item.get("property"),
        )

    async def _request(
        self,
        credentials: FeishuCredentials,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Request autenticado. Retorna `data` del payload si `code == 0`.

        Raises:
            RemoteAuthError: token rechazado (se descarta el token cacheado)
            RemoteRequestError: HTTP no-2xx o `code != 0`
            RemoteTransportError: timeout o fallo de red
        """
        token = await self.get_tenant_token(credentials)
        response = await self._send(
            method,
            path,
            params=params,
            json=json,
            headers={"Authorization": f"Bearer {token}"},
        )
        payload = self._decode(response)
        code = payload.get("code", 0)

        if code in AUTH_ERROR_CODES or response.status_code in (401, 403):
            self.invalidate_token(credentials.app_id)
            raise RemoteAuthError(
                f"Feishu rechazo la autenticacion: [{code}] {payload.get('msg', '')}",
                http_status=response.status_code,
                api_code=code,
            )

        if response.status_code >= 400 or code != 0:
            retryable = (
                response.status_code == 429
                or response.status_code >= 500
                or code == RATE_LIMIT_CODE
            )
            logger.warning(
                f"[feishu] {method} {path} fallo: HTTP {response.status_code} "
                f"[{code}] {payload.get('msg', '')}"
            )
            raise RemoteRequestError(
                f"Feishu {method} {path} fallo: HTTP {response.status_code} [{code}] {payload.get('msg', '')}",
                http_status=response.status_code,
                api_code=code,
                retryable=retryable,
            )

        return payload.get("data") or {}

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteTransportError(f"Timeout en {method} {path}: {e}") from e
        except httpx.TransportError as e:
            raise RemoteTransportError(f"Fallo de red en {method} {path}: {e}") from e

    @staticmethod
    def _decode(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            raise RemoteRequestError(
                f"Respuesta no JSON de Feishu (HTTP {response.status_code})",
                http_status=response.status_code,
                retryable=response.status_code >= 500,
            ) from e
        if not isinstance(payload, dict):
            raise RemoteRequestError(
                "Respuesta inesperada de Feishu (no es objeto JSON)",
                http_status=response.status_code,
            )
        return payload
