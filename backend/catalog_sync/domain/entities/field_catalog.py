"""
Catalogo de campos de dominio por tipo de contenido.

Cada ContentType tiene una lista inmutable de DomainField. El orden de la
lista es el orden canonico: se usa para crear columnas y para calcular el
hash de contenido (el mismo registro siempre produce el mismo hash).

Los display_name son las etiquetas de columna en Feishu; el matching de
columnas existentes se hace por nombre exacto.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from catalog_sync.shared.constants.sync_constants import (
    ContentType,
    DataKind,
    SUBJECT_ID_FIELD,
)


@dataclass(frozen=True)
class DomainField:
    """
    Un campo del catalogo de dominio.

    - domain_name: clave estable (ej: "doubanRating")
    - display_name: etiqueta de la columna externa (ej: "豆瓣评分")
    - data_kind: tipo abstracto; decide plantilla de columna y normalizacion
    - required: si falta su columna, el sync aborta antes del diff
    - nested_path: ruta con puntos dentro del valor crudo (ej: "rating.average")
    - options: opciones de single_select
    """

    domain_name: str
    display_name: str
    data_kind: DataKind
    required: bool = False
    nested_path: Optional[str] = None
    description: str = ""
    options: Tuple[str, ...] = ()


BOOK_STATUS_OPTIONS = ("想读", "在读", "读过")
MOVIE_STATUS_OPTIONS = ("想看", "看过")
TV_STATUS_OPTIONS = ("想看", "在看", "看过")


def _subject_id() -> DomainField:
    return DomainField(
        domain_name=SUBJECT_ID_FIELD,
        display_name="Subject ID",
        data_kind=DataKind.TEXT,
        required=True,
        description="Identificador Douban (clave natural)",
    )


def _personal_fields(status_options: Tuple[str, ...]) -> List[DomainField]:
    """Campos del usuario comunes a todos los tipos."""
    return [
        DomainField("myStatus", "我的状态", DataKind.SINGLE_SELECT,
                    description="Estado de lectura/visionado", options=status_options),
        DomainField("myRating", "我的评分", DataKind.RATING, description="Puntuacion personal 1-5"),
        DomainField("myTags", "我的标签", DataKind.TEXT, description="Etiquetas personales"),
        DomainField("myComment", "我的备注", DataKind.TEXT, description="Comentario personal"),
        DomainField("markDate", "标记日期", DataKind.DATE, description="Fecha en que se marco"),
    ]


def _douban_rating() -> DomainField:
    return DomainField(
        "doubanRating", "豆瓣评分", DataKind.NUMBER,
        nested_path="rating.average", description="Puntuacion media en Douban",
    )


def _video_credits() -> List[DomainField]:
    return [
        DomainField("cast", "主演", DataKind.TEXT),
        DomainField("director", "导演", DataKind.TEXT),
        DomainField("writer", "编剧", DataKind.TEXT),
        DomainField("country", "制片地区", DataKind.TEXT),
        DomainField("language", "语言", DataKind.TEXT),
    ]


BOOK_FIELDS: Tuple[DomainField, ...] = tuple([
    _subject_id(),
    DomainField("title", "书名", DataKind.TEXT, required=True, description="Titulo del libro"),
    DomainField("subtitle", "副标题", DataKind.TEXT),
    DomainField("originalTitle", "原作名", DataKind.TEXT),
    DomainField("author", "作者", DataKind.TEXT),
    DomainField("translator", "译者", DataKind.TEXT),
    DomainField("publisher", "出版社", DataKind.TEXT),
    DomainField("publishDate", "出版年份", DataKind.TEXT),
    _douban_rating(),
    DomainField("summary", "内容简介", DataKind.TEXT),
    DomainField("coverImage", "封面图", DataKind.URL),
    *_personal_fields(BOOK_STATUS_OPTIONS),
])

MOVIE_FIELDS: Tuple[DomainField, ...] = tuple([
    _subject_id(),
    DomainField("title", "电影名", DataKind.TEXT, required=True, description="Titulo de la pelicula"),
    DomainField("genre", "类型", DataKind.TEXT),
    DomainField("coverImage", "封面图", DataKind.URL),
    _douban_rating(),
    DomainField("duration", "片长", DataKind.TEXT),
    DomainField("releaseDate", "上映日期", DataKind.TEXT),
    DomainField("summary", "剧情简介", DataKind.TEXT),
    *_video_credits(),
    *_personal_fields(MOVIE_STATUS_OPTIONS),
])


def _series_fields() -> Tuple[DomainField, ...]:
    return tuple([
        _subject_id(),
        DomainField("title", "片名", DataKind.TEXT, required=True, description="Titulo de la serie"),
        DomainField("genre", "类型", DataKind.TEXT),
        DomainField("coverImage", "封面图", DataKind.URL),
        _douban_rating(),
        DomainField("episodeDuration", "单集片长", DataKind.TEXT),
        DomainField("episodeCount", "集数", DataKind.TEXT),
        DomainField("firstAirDate", "首播日期", DataKind.TEXT),
        DomainField("summary", "剧情简介", DataKind.TEXT),
        *_video_credits(),
        *_personal_fields(TV_STATUS_OPTIONS),
    ])


CATALOGS: Dict[ContentType, Tuple[DomainField, ...]] = {
    ContentType.BOOKS: BOOK_FIELDS,
    ContentType.MOVIES: MOVIE_FIELDS,
    ContentType.TV: _series_fields(),
    ContentType.DOCUMENTARY: _series_fields(),
}


def get_catalog(content_type: ContentType) -> Tuple[DomainField, ...]:
    """Retorna el catalogo de campos (orden canonico) de un tipo de contenido."""
    return CATALOGS[ContentType(content_type)]


def get_field(content_type: ContentType, domain_name: str) -> Optional[DomainField]:
    """Busca un campo del catalogo por su domain_name."""
    for field in get_catalog(content_type):
        if field.domain_name == domain_name:
            return field
    return None


def required_fields(content_type: ContentType) -> List[DomainField]:
    """Campos obligatorios (sin ellos no hay sync)."""
    return [f for f in get_catalog(content_type) if f.required]
