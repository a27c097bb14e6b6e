"""
Configuracion de logging (loguru) para jobs de sincronizacion.

El motor solo usa `from loguru import logger`; los sinks se instalan
una vez al inicio del proceso (script / worker) con `setup_logging`.
"""
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from catalog_sync.core.config import settings


LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{line} | {message}"

_configured = False


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """
    Instala los sinks de loguru: stderr + archivo con rotacion.

    Args:
        level: Nivel minimo (default: settings.LOG_LEVEL)
        log_file: Ruta del archivo de log (default: settings.LOG_FILE).
                  Cadena vacia desactiva el sink de archivo.
    """
    global _configured
    if _configured:
        return

    level = (level or settings.LOG_LEVEL).upper()
    log_file = settings.LOG_FILE if log_file is None else log_file

    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level, colorize=True)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=LOG_FORMAT,
            rotation="100 MB",
            retention="10 days",
            level=level,
        )

    _configured = True
    logger.info(f"Logging inicializado ({settings.APP_NAME} v{settings.APP_VERSION}, nivel={level})")


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    """Enmascara credenciales para logs (deja visibles los primeros caracteres)."""
    if not value:
        return "<vacio>"
    if len(value) <= visible:
        return "*" * len(value)
    return value[:visible] + "*" * (len(value) - visible)
