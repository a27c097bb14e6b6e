"""
Deteccion de cambios: snapshot Douban vs. contenido actual de Feishu.

Indexa las filas existentes por el valor de la columna "Subject ID" y
clasifica cada registro entrante en crear / actualizar / sin cambios
comparando hashes de contenido. Con delete_orphans, las filas cuyo
subject id ya no aparece en el snapshot se marcan para borrar.
"""
from __future__ import annotations

from typing import Dict, List, Optional

from loguru import logger

from catalog_sync.application.services.value_normalizer import ABSENT, ValueNormalizer
from catalog_sync.domain.entities.field_catalog import get_catalog, get_field
from catalog_sync.domain.entities.sync_models import (
    ChangeSet,
    DomainRecord,
    ExternalRecord,
    FieldMapping,
)
from catalog_sync.shared.constants.sync_constants import SUBJECT_ID_FIELD
from catalog_sync.shared.exceptions.sync import MissingRequiredMappingError


class ChangeDetector:
    """
    Calcula el ChangeSet de un sync. Sin I/O.

    Uso:
        detector = ChangeDetector()
        change_set = detector.diff(existing, incoming, mapping, delete_orphans=True)
    """

    def __init__(self, normalizer: Optional[ValueNormalizer] = None):
        self.normalizer = normalizer or ValueNormalizer()

    def index_by_subject_id(
        self,
        existing: List[ExternalRecord],
        mapping: FieldMapping,
    ) -> Dict[str, ExternalRecord]:
        """
        Indexa filas Feishu por subject id.

        Filas sin subject id legible se ignoran (no se pueden emparejar ni
        borrar con seguridad). Si hay duplicados gana la primera fila.
        """
        column_id = mapping.column_for(SUBJECT_ID_FIELD)
        if not column_id:
            raise MissingRequiredMappingError(mapping.table_key, [SUBJECT_ID_FIELD])

        subject_field = get_field(mapping.content_type, SUBJECT_ID_FIELD)
        index: Dict[str, ExternalRecord] = {}
        skipped = 0

        for record in existing:
            try:
                subject_id = self.normalizer.canonical(subject_field, record.fields.get(column_id, ABSENT))
            except (ValueError, TypeError):
                subject_id = ABSENT
            if subject_id is ABSENT or not isinstance(subject_id, str):
                skipped += 1
                continue
            if subject_id in index:
                logger.warning(
                    f"[change-detector] Subject ID duplicado en Feishu: {subject_id} "
                    f"({index[subject_id].record_id}, {record.record_id}); se usa el primero"
                )
                continue
            index[subject_id] = record

        if skipped:
            logger.warning(f"[change-detector] {skipped} filas sin Subject ID ignoradas")
        return index

    def diff(
        self,
        existing: List[ExternalRecord],
        incoming: List[DomainRecord],
        mapping: FieldMapping,
        *,
        full_sync: bool = False,
        delete_orphans: bool = False,
    ) -> ChangeSet:
        """
        Calcula las operaciones para que Feishu refleje `incoming`.

        Args:
            existing: Todas las filas actuales de la tabla
            incoming: Snapshot validado (subject ids unicos, mismo tipo de contenido)
            mapping: Mapeo domain_name -> column_id (debe incluir Subject ID)
            full_sync: Fuerza update de todo registro emparejado
            delete_orphans: Borra filas cuyo subject id no esta en incoming

        Returns:
            ChangeSet con listas disjuntas
        """
        catalog = get_catalog(mapping.content_type)
        index = self.index_by_subject_id(existing, mapping)
        change_set = ChangeSet()
        seen: set = set()

        for record in incoming:
            subject_id = str(record.subject_id).strip()
            seen.add(subject_id)
            match = index.get(subject_id)

            if match is None:
                change_set.to_create.append(record)
                continue

            if full_sync or self._has_changed(record, match, catalog, mapping):
                change_set.to_update.append((record, match))
            else:
                change_set.unchanged.append(record)

        if delete_orphans:
            change_set.to_delete = [
                ext for subject_id, ext in index.items() if subject_id not in seen
            ]

        logger.info(
            f"[change-detector] {mapping.table_key}: crear={len(change_set.to_create)} "
            f"actualizar={len(change_set.to_update)} borrar={len(change_set.to_delete)} "
            f"sin_cambios={len(change_set.unchanged)}"
        )
        return change_set

    def _has_changed(self, record: DomainRecord, match: ExternalRecord, catalog, mapping: FieldMapping) -> bool:
        try:
            incoming_hash, existing_hash = self.normalizer.content_hashes(record, match, catalog, mapping)
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(
                f"[change-detector] No se pudo calcular hash de {record.subject_id} "
                f"({match.record_id}): {e}; se asume cambiado"
            )
            return True
        return incoming_hash != existing_hash
