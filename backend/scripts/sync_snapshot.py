"""
CLI: snapshot Douban (JSON) -> tabla Feishu Bitable.

Uso recomendado:
  - Ejecutar como job (cron/systemd timer) despues del scraping.
  - El snapshot es una lista JSON de objetos con `subjectId` y los campos
    del catalogo (`title`, `author`, `rating`, ...). Tambien se acepta
    `{"records": [...]}`.

Variables de entorno requeridas:
  - FEISHU_APP_ID
  - FEISHU_APP_SECRET
  - FEISHU_APP_TOKEN
  - DATABASE_URL (o DATABASE_HOST/PORT/USER/PASSWORD/NAME)
  - REDIS_URL

Ejecucion:
  python scripts/sync_snapshot.py --snapshot books.json --table-id tblXXX --content-type books
  python scripts/sync_snapshot.py ... --delete-orphans --full-sync
  python scripts/sync_snapshot.py ... --preview
  python scripts/sync_snapshot.py ... --reset-mapping

Codigos de salida: 0 ok, 1 sync con lotes fallidos, 2 error de configuracion/validacion/red.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, List

from loguru import logger
from dotenv import load_dotenv

# Permite ejecutar este script desde cualquier cwd sin configurar PYTHONPATH.
_BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(_BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(_BACKEND_ROOT))

# .env del backend primero, luego el de la raiz del repo
load_dotenv(_BACKEND_ROOT / ".env", override=False)
load_dotenv(_BACKEND_ROOT.parent / ".env", override=False)

from catalog_sync.application.use_cases.sync_use_cases import build_sync_engine
from catalog_sync.core.config import settings
from catalog_sync.core.logging_setup import setup_logging
from catalog_sync.domain.entities.sync_models import (
    DomainRecord,
    FeishuCredentials,
    SyncOptions,
    TargetConfig,
)
from catalog_sync.infrastructure.cache.redis_cache import create_redis_client
from catalog_sync.infrastructure.database.session import create_engine, create_session_factory
from catalog_sync.infrastructure.external.feishu.client import create_http_client
from catalog_sync.shared.constants.sync_constants import ContentType, SUBJECT_ID_FIELD
from catalog_sync.shared.exceptions.base import AppException


def _env_required(name: str) -> str:
    val = os.getenv(name)
    if not val:
        raise SystemExit(f"Falta variable de entorno obligatoria: {name}")
    return val


def load_snapshot(path: Path, content_type: ContentType) -> List[DomainRecord]:
    """
    Lee un snapshot JSON y lo convierte a DomainRecord.

    `subjectId` (o `subject_id`) es la clave natural; `category` es opcional
    y por defecto es el tipo de contenido de la tabla.
    """
    payload: Any = json.loads(path.read_text(encoding="utf-8"))
    items = payload.get("records", []) if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        raise SystemExit(f"Snapshot invalido (se esperaba una lista): {path}")

    records: List[DomainRecord] = []
    for item in items:
        values = dict(item)
        subject_id = values.pop(SUBJECT_ID_FIELD, None) or values.pop("subject_id", None)
        category = values.pop("category", None) or content_type.value
        records.append(DomainRecord(
            subject_id="" if subject_id is None else str(subject_id),
            category=category,
            values=values,
        ))
    return records


async def _run(args: argparse.Namespace) -> int:
    credentials = FeishuCredentials(
        app_id=_env_required("FEISHU_APP_ID"),
        app_secret=_env_required("FEISHU_APP_SECRET"),
        app_token=_env_required("FEISHU_APP_TOKEN"),
    )
    content_type = ContentType(args.content_type)
    target = TargetConfig(credentials=credentials, table_id=args.table_id, content_type=content_type)

    db_engine = create_engine(settings)
    http_client = create_http_client(settings)
    redis_client = create_redis_client(settings)
    engine = build_sync_engine(settings, http_client, redis_client, create_session_factory(db_engine))

    try:
        if args.reset_mapping:
            deleted = await engine.resolver.reset_mapping(args.user_id, target.table_key)
            logger.info(f"Reset de mapeo {target.table_key}: {'borrado' if deleted else 'no existia'}")
            return 0

        if args.preview:
            preview = await engine.preview_mapping(credentials, target.table_key, content_type)
            logger.info(f"Columnas existentes ({len(preview.will_match)}): {', '.join(preview.will_match)}")
            logger.info(f"Columnas a crear ({len(preview.will_create)}): {', '.join(preview.will_create)}")
            return 0

        records = load_snapshot(Path(args.snapshot), content_type)

        def on_progress(current: int, total: int) -> None:
            logger.info(f"Progreso: {current}/{total}")

        summary = await engine.sync(
            args.user_id,
            target,
            records,
            SyncOptions(
                full_sync=args.full_sync,
                delete_orphans=args.delete_orphans,
                on_progress=on_progress,
            ),
        )
        print(summary.model_dump_json(indent=2))
        return 0 if summary.success else 1
    except AppException as e:
        logger.error(f"Sync abortado [{e.error_code}]: {e.message}")
        print(json.dumps(e.to_dict(), ensure_ascii=False, indent=2))
        return 2
    finally:
        await http_client.aclose()
        await redis_client.aclose()
        await db_engine.dispose()


def main() -> int:
    parser = argparse.ArgumentParser(description="Sincroniza un snapshot Douban con una tabla Feishu.")
    parser.add_argument("--snapshot", help="Ruta al snapshot JSON.")
    parser.add_argument("--table-id", required=True, help="ID de la tabla Feishu (tblXXX).")
    parser.add_argument(
        "--content-type",
        required=True,
        choices=[c.value for c in ContentType],
        help="Tipo de contenido de la tabla.",
    )
    parser.add_argument("--user-id", default=os.getenv("SYNC_USER_ID", "default"))
    parser.add_argument("--full-sync", action="store_true", help="Actualiza todos los registros emparejados.")
    parser.add_argument("--delete-orphans", action="store_true", help="Borra filas que no estan en el snapshot.")
    parser.add_argument("--preview", action="store_true", help="Solo muestra el mapeo que se aplicaria.")
    parser.add_argument("--reset-mapping", action="store_true", help="Borra el mapeo guardado de la tabla.")
    args = parser.parse_args()

    if not (args.preview or args.reset_mapping or args.snapshot):
        parser.error("--snapshot es obligatorio salvo con --preview o --reset-mapping")

    setup_logging()
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
