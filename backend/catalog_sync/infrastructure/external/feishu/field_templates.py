"""
Plantillas de columna Feishu por tipo de dato de dominio.

Feishu acepta escrituras con tipo incorrecto sin quejarse (un numero en
una columna de texto, por ejemplo), asi que la plantilla es tambien la
referencia para avisar de columnas existentes con tipo distinto.
"""
from typing import Any, Dict, Optional

from catalog_sync.domain.entities.field_catalog import DomainField
from catalog_sync.shared.constants.sync_constants import DataKind


class FeishuFieldType:
    """Codigos de tipo de campo de Bitable."""
    TEXT = 1
    NUMBER = 2
    SINGLE_SELECT = 3
    MULTI_SELECT = 4
    DATETIME = 5
    CHECKBOX = 7
    URL = 15


_TYPE_BY_KIND: Dict[DataKind, int] = {
    DataKind.TEXT: FeishuFieldType.TEXT,
    DataKind.NUMBER: FeishuFieldType.NUMBER,
    # Rating es una columna Number con ui_type "Rating"
    DataKind.RATING: FeishuFieldType.NUMBER,
    DataKind.DATE: FeishuFieldType.DATETIME,
    DataKind.SINGLE_SELECT: FeishuFieldType.SINGLE_SELECT,
    DataKind.URL: FeishuFieldType.URL,
}

_UI_TYPE_BY_KIND: Dict[DataKind, str] = {
    DataKind.TEXT: "Text",
    DataKind.NUMBER: "Number",
    DataKind.RATING: "Rating",
    DataKind.DATE: "DateTime",
    DataKind.SINGLE_SELECT: "SingleSelect",
    DataKind.URL: "Url",
}


def expected_type_code(data_kind: DataKind) -> int:
    """Codigo de tipo Feishu esperado para un tipo de dato."""
    return _TYPE_BY_KIND[DataKind(data_kind)]


def _properties_for(field: DomainField) -> Optional[Dict[str, Any]]:
    kind = DataKind(field.data_kind)
    if kind == DataKind.RATING:
        return {
            "formatter": "0",
            "min": 1,
            "max": 5,
            "rating": {"symbol": "star"},
        }
    if kind == DataKind.NUMBER:
        return {"formatter": "0.0"}
    if kind == DataKind.DATE:
        return {"date_formatter": "yyyy/MM/dd", "auto_fill": False}
    if kind == DataKind.SINGLE_SELECT:
        return {"options": [{"name": option} for option in field.options]}
    return None


def build_column_template(field: DomainField) -> Dict[str, Any]:
    """
    Payload de creacion de columna para un DomainField.

    Returns:
        Dict con field_name, type, ui_type y (si aplica) property
    """
    payload: Dict[str, Any] = {
        "field_name": field.display_name,
        "type": expected_type_code(field.data_kind),
        "ui_type": _UI_TYPE_BY_KIND[DataKind(field.data_kind)],
    }
    properties = _properties_for(field)
    if properties is not None:
        payload["property"] = properties
    return payload
