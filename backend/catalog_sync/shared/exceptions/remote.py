"""
Excepciones de integracion con la API remota de tablas (Feishu).
"""
from typing import Optional

from catalog_sync.shared.exceptions.base import AppException


class RemoteApiError(AppException):
    """Error de integracion con la API remota."""

    def __init__(
        self,
        message: str,
        error_code: str = "REMOTE_API_ERROR",
        http_status: Optional[int] = None,
        api_code: Optional[int] = None,
    ):
        super().__init__(
            message=message,
            status_code=502,
            error_code=error_code,
            details={"http_status": http_status, "api_code": api_code}
        )
        self.http_status = http_status
        self.api_code = api_code


class RemoteAuthError(RemoteApiError):
    """Credenciales invalidas o token rechazado por la API remota."""

    def __init__(self, message: str, http_status: Optional[int] = None, api_code: Optional[int] = None):
        super().__init__(
            message=message,
            error_code="REMOTE_AUTH_ERROR",
            http_status=http_status,
            api_code=api_code,
        )


class RemoteRequestError(RemoteApiError):
    """
    La API respondio con error (HTTP no-2xx o `code != 0` en el payload).

    `retryable` indica si el caller podria reintentar (429 / 5xx / limite de tasa).
    """

    def __init__(
        self,
        message: str,
        http_status: Optional[int] = None,
        api_code: Optional[int] = None,
        retryable: bool = False,
    ):
        super().__init__(
            message=message,
            error_code="REMOTE_REQUEST_ERROR",
            http_status=http_status,
            api_code=api_code,
        )
        self.retryable = retryable
        self.details["retryable"] = retryable


class RemoteTransportError(RemoteApiError):
    """Timeout o fallo de red antes de obtener respuesta."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="REMOTE_TRANSPORT_ERROR")
        self.retryable = True
