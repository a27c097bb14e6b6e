"""
Normalizador de valores Douban <-> Feishu.

Convierte los valores de un DomainRecord al formato que acepta Feishu y
calcula la forma canonica (comparable) de un valor, tanto del lado Douban
como del lado Feishu, para el hash de contenido.

Reglas:
- Fechas: timestamp entero en milisegundos (UTC)
- Listas en columnas de texto (ej: tags, autores): se unen con "," en orden;
  en otros tipos se pasan tal cual
- None / ausente / "" / []: se omiten del payload y del hash
- URL: Feishu espera {"link", "text"}
- El hash de un registro entrante se calcula sobre lo que se escribiria:
  un valor no convertible se omite del payload y del hash por igual
"""
from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from loguru import logger

from catalog_sync.domain.entities.field_catalog import DomainField
from catalog_sync.domain.entities.sync_models import DomainRecord, ExternalRecord, FieldMapping
from catalog_sync.shared.constants.sync_constants import DataKind, SUBJECT_ID_FIELD
from catalog_sync.shared.utils.datetime_utils import DateTimeUtils


class _Absent:
    """Marca de valor ausente (distinto de None)."""

    _instance: Optional["_Absent"] = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent()

# Separador al escribir listas en columnas de texto
TEXT_LIST_SEPARATOR = ","


def walk_path(tree: Any, path: str) -> Any:
    """
    Recorre una ruta con puntos ("rating.average") sobre dicts/listas.

    Tolerante: si falta un nivel intermedio retorna ABSENT, nunca lanza.
    Los segmentos numericos indexan listas ("casts.0.name").
    """
    current = tree
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return ABSENT
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return ABSENT
            current = current[index]
        else:
            return ABSENT
    return current


def is_empty(value: Any) -> bool:
    """None, ausente, string vacio y colecciones vacias cuentan como vacio."""
    if value is None or value is ABSENT:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def extract_value(record: DomainRecord, field: DomainField) -> Any:
    """
    Valor crudo de un campo dentro de un DomainRecord.

    Prioridad: subject_id del registro, valor plano por domain_name y, si
    no hay valor plano, la nested_path sobre el arbol de valores.
    """
    if field.domain_name == SUBJECT_ID_FIELD:
        return record.subject_id

    value = record.values.get(field.domain_name, ABSENT)
    if field.nested_path and (value is ABSENT or isinstance(value, Mapping)):
        nested = walk_path(record.values, field.nested_path)
        if nested is not ABSENT:
            return nested
        if isinstance(value, Mapping):
            # {"doubanRating": {"average": 8.1}} -> ultimo segmento de la ruta
            return walk_path(value, field.nested_path.split(".")[-1])
    return value


class ValueNormalizer:
    """
    Conversion de valores y hash de contenido.

    Uso:
        normalizer = ValueNormalizer()
        fields = normalizer.to_remote_fields(record, catalog, mapping)
        digest = normalizer.hash_domain_record(record, catalog, mapping)
    """

    # Decimales al comparar numeros (evita falsos cambios por float)
    NUMBER_PRECISION = 6

    # ------------------------------------------------------------------
    # Escritura
    # ------------------------------------------------------------------

    def to_remote_value(self, field: DomainField, value: Any) -> Any:
        """
        Convierte un valor de dominio al formato de escritura de Feishu.

        Returns:
            Valor listo para el payload, o ABSENT si debe omitirse

        Raises:
            ValueError: si el valor no es convertible al tipo del campo
        """
        if is_empty(value):
            return ABSENT

        kind = DataKind(field.data_kind)
        if isinstance(value, (list, tuple)) and kind != DataKind.URL:
            if kind == DataKind.TEXT:
                return self._join_text(value)
            return list(value)

        if kind == DataKind.TEXT:
            return value.strip() if isinstance(value, str) else str(value)
        if kind == DataKind.NUMBER:
            return self._to_number(value)
        if kind == DataKind.RATING:
            number = self._to_number(value)
            return int(number) if float(number).is_integer() else number
        if kind == DataKind.DATE:
            return DateTimeUtils.to_epoch_millis(value)
        if kind == DataKind.SINGLE_SELECT:
            return str(value).strip()
        if kind == DataKind.URL:
            return self._to_url(value)
        raise ValueError(f"Tipo de dato no soportado: {kind}")

    def remote_values(
        self,
        record: DomainRecord,
        catalog: Iterable[DomainField],
        mapping: FieldMapping,
    ) -> Tuple[Dict[str, Any], List[str]]:
        """
        Valores de escritura de los campos mapeados, indexados por domain_name.

        Un valor no convertible se omite con un warning; no invalida el registro.

        Returns:
            (domain_name -> valor, domain_names omitidos por no convertibles)
        """
        values: Dict[str, Any] = {}
        skipped: List[str] = []
        for field in catalog:
            if not mapping.column_for(field.domain_name):
                continue
            raw = extract_value(record, field)
            try:
                value = self.to_remote_value(field, raw)
            except (ValueError, TypeError) as e:
                logger.warning(
                    f"[normalizer] Valor omitido en {record.subject_id}.{field.domain_name}: {e}"
                )
                skipped.append(field.domain_name)
                continue
            if value is not ABSENT:
                values[field.domain_name] = value
        return values, skipped

    def to_remote_fields(
        self,
        record: DomainRecord,
        catalog: Iterable[DomainField],
        mapping: FieldMapping,
    ) -> Dict[str, Any]:
        """Payload `column_id -> valor` de un registro (solo campos mapeados)."""
        values, _ = self.remote_values(record, catalog, mapping)
        return {mapping.column_for(name): value for name, value in values.items()}

    # ------------------------------------------------------------------
    # Forma canonica y hash
    # ------------------------------------------------------------------

    def canonical(self, field: DomainField, value: Any) -> Any:
        """
        Forma comparable de un valor (sirve para ambos lados).

        Del lado Feishu, el texto puede llegar como segmentos
        [{"type": "text", "text": "..."}] y las URL como {"link", "text"}.

        Raises:
            ValueError / TypeError: valor malformado (el caller lo trata como cambio)
        """
        if is_empty(value):
            return ABSENT

        kind = DataKind(field.data_kind)
        if kind == DataKind.URL:
            if isinstance(value, list):
                value = value[0]
            return self._to_url(value)["link"]

        if isinstance(value, (list, tuple)):
            if all(isinstance(item, Mapping) for item in value):
                return "".join(str(item.get("text", "")) for item in value).strip()
            if kind == DataKind.TEXT:
                return self._join_text(value)
            return [self._scalar_text(item) for item in value]

        if kind in (DataKind.NUMBER, DataKind.RATING):
            return round(self._to_number(value), self.NUMBER_PRECISION)
        if kind == DataKind.DATE:
            return DateTimeUtils.to_epoch_millis(value)
        if isinstance(value, Mapping):
            if "text" in value:
                return str(value["text"]).strip()
            raise TypeError(f"Objeto no esperado para {field.domain_name}: {value!r}")
        return self._scalar_text(value)

    def hash_pairs(self, pairs: List[Tuple[str, Any]]) -> str:
        """sha256 de la serializacion estable de pares (domain_name, valor canonico)."""
        payload = json.dumps(pairs, ensure_ascii=False, separators=(",", ":"), sort_keys=True)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def hash_domain_record(
        self,
        record: DomainRecord,
        catalog: Iterable[DomainField],
        mapping: FieldMapping,
    ) -> str:
        """Hash de contenido de un DomainRecord (orden del catalogo, campos mapeados)."""
        values, _ = self.remote_values(record, catalog, mapping)
        return self._hash_values(values, catalog)

    def hash_external_record(
        self,
        record: ExternalRecord,
        catalog: Iterable[DomainField],
        mapping: FieldMapping,
        skip: Iterable[str] = (),
    ) -> str:
        """
        Hash de contenido de una fila Feishu, calculado igual que el de dominio.

        `skip`: domain_names que no se comparan (no convertibles del lado entrante).
        """
        skip = set(skip)
        pairs: List[Tuple[str, Any]] = []
        for field in catalog:
            column_id = mapping.column_for(field.domain_name)
            if not column_id or field.domain_name in skip:
                continue
            value = self.canonical(field, record.fields.get(column_id, ABSENT))
            if value is not ABSENT:
                pairs.append((field.domain_name, value))
        return self.hash_pairs(pairs)

    def content_hashes(
        self,
        record: DomainRecord,
        external: ExternalRecord,
        catalog: Iterable[DomainField],
        mapping: FieldMapping,
    ) -> Tuple[str, str]:
        """
        Hashes comparables (entrante, existente) de un par emparejado.

        Los campos entrantes no convertibles no se escriben, asi que tampoco
        se comparan del lado Feishu.
        """
        catalog = tuple(catalog)
        values, skipped = self.remote_values(record, catalog, mapping)
        return (
            self._hash_values(values, catalog),
            self.hash_external_record(external, catalog, mapping, skip=skipped),
        )

    # ------------------------------------------------------------------
    # Internos
    # ------------------------------------------------------------------

    def _hash_values(self, values: Dict[str, Any], catalog: Iterable[DomainField]) -> str:
        pairs: List[Tuple[str, Any]] = []
        for field in catalog:
            if field.domain_name not in values:
                continue
            value = self.canonical(field, values[field.domain_name])
            if value is not ABSENT:
                pairs.append((field.domain_name, value))
        return self.hash_pairs(pairs)

    def _join_text(self, items: Iterable[Any]) -> str:
        return TEXT_LIST_SEPARATOR.join(
            self._scalar_text(item) for item in items if not is_empty(item)
        )

    @staticmethod
    def _to_number(value: Any) -> float:
        if isinstance(value, bool):
            raise ValueError(f"Booleano no es numero: {value!r}")
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            return float(value.strip())
        raise TypeError(f"No numerico: {value!r}")

    @staticmethod
    def _to_url(value: Any) -> Dict[str, str]:
        if isinstance(value, Mapping):
            link = value.get("link") or value.get("url")
            if not link:
                raise ValueError(f"URL sin 'link': {value!r}")
            return {"link": str(link), "text": str(value.get("text") or link)}
        if isinstance(value, str):
            return {"link": value.strip(), "text": value.strip()}
        raise TypeError(f"URL no soportada: {value!r}")

    @staticmethod
    def _scalar_text(value: Any) -> str:
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value).strip()
