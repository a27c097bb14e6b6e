"""
Excepcion base para todas las excepciones del motor de sincronizacion.
"""
from typing import Optional, Dict, Any


class AppException(Exception):
    """
    Excepcion base de la aplicacion.
    Todas las excepciones personalizadas deben heredar de esta clase.

    El caller (API, CLI, worker) traduce `status_code` / `error_code`
    a su propia superficie; el motor nunca expone un stack trace crudo.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Inicializa la excepcion.

        Args:
            message: Mensaje de error descriptivo
            status_code: Codigo de estado HTTP sugerido
            error_code: Codigo de error estable (para clientes / CLI)
            details: Detalles adicionales del error (campo, indice, etc.)
        """
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Representacion estructurada del error."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }
