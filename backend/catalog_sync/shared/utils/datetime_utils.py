"""
Utilidades para manejo de fechas y horas.

Feishu almacena columnas DateTime como timestamps enteros en milisegundos
(epoch UTC); aqui se concentran las conversiones.
"""
from datetime import date, datetime, time, timezone
from typing import Any, Optional


class DateTimeUtils:
    """Clase de utilidades para operaciones con fechas y horas."""

    @staticmethod
    def now_utc() -> datetime:
        """
        Obtiene la fecha y hora actual en UTC.

        Returns:
            datetime: Fecha y hora actual en UTC
        """
        return datetime.now(timezone.utc)

    @staticmethod
    def ensure_utc(dt: datetime) -> datetime:
        """Normaliza un datetime a UTC (aware). Naive se asume UTC."""
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)

    @staticmethod
    def from_iso_string(iso_string: str) -> Optional[datetime]:
        """
        Convierte un string ISO 8601 a datetime.

        Acepta el sufijo 'Z' y fechas sin hora ("2024-03-01").

        Returns:
            Optional[datetime]: Objeto datetime o None si hay error
        """
        try:
            return datetime.fromisoformat(iso_string.strip().replace("Z", "+00:00"))
        except (ValueError, TypeError, AttributeError):
            return None

    @staticmethod
    def to_epoch_millis(value: Any) -> int:
        """
        Convierte una fecha a timestamp entero en milisegundos (UTC).

        Acepta datetime, date, enteros/flotantes (ya en ms) y strings ISO 8601.

        Raises:
            ValueError: si el valor no representa una fecha
        """
        if isinstance(value, bool):
            raise ValueError(f"Valor booleano no es una fecha: {value!r}")
        if isinstance(value, datetime):
            return int(DateTimeUtils.ensure_utc(value).timestamp() * 1000)
        if isinstance(value, date):
            midnight = datetime.combine(value, time.min, tzinfo=timezone.utc)
            return int(midnight.timestamp() * 1000)
        if isinstance(value, (int, float)):
            return int(value)
        if isinstance(value, str):
            parsed = DateTimeUtils.from_iso_string(value)
            if parsed is None:
                raise ValueError(f"Fecha no reconocida: {value!r}")
            return int(DateTimeUtils.ensure_utc(parsed).timestamp() * 1000)
        raise ValueError(f"Tipo de fecha no soportado: {type(value).__name__}")
