"""
Tests unitarios para ValueNormalizer y el recorrido de rutas anidadas.
"""
from datetime import date, datetime, timezone

import pytest

from catalog_sync.application.services.value_normalizer import (
    ABSENT,
    ValueNormalizer,
    extract_value,
    is_empty,
    walk_path,
)
from catalog_sync.domain.entities.field_catalog import get_catalog, get_field
from catalog_sync.domain.entities.sync_models import DomainRecord, ExternalRecord, FieldMapping
from catalog_sync.shared.constants.sync_constants import ContentType


def _books_field(name):
    return get_field(ContentType.BOOKS, name)


class TestWalkPath:
    """Tests para el recorrido tolerante de rutas con puntos."""

    def test_walks_nested_dicts(self):
        """Verifica que se resuelve una ruta anidada existente."""
        assert walk_path({"rating": {"average": 8.4}}, "rating.average") == 8.4

    def test_missing_intermediate_returns_absent(self):
        """Verifica que un nivel intermedio ausente retorna ABSENT sin lanzar."""
        assert walk_path({"rating": None}, "rating.average") is ABSENT
        assert walk_path({}, "rating.average") is ABSENT
        assert walk_path({"rating": "8.0"}, "rating.average") is ABSENT

    def test_numeric_segment_indexes_lists(self):
        """Verifica que un segmento numerico indexa listas."""
        tree = {"casts": [{"name": "A"}, {"name": "B"}]}
        assert walk_path(tree, "casts.1.name") == "B"
        assert walk_path(tree, "casts.5.name") is ABSENT


class TestExtractValue:
    """Tests para la extraccion de valores de un DomainRecord."""

    def test_subject_id_comes_from_record(self):
        """Verifica que subjectId se toma del atributo subject_id."""
        record = DomainRecord(subject_id="100", category=ContentType.BOOKS, values={})
        assert extract_value(record, _books_field("subjectId")) == "100"

    def test_nested_path_used_when_flat_value_missing(self):
        """Verifica que doubanRating se lee de rating.average."""
        record = DomainRecord("1", ContentType.BOOKS, {"rating": {"average": 7.9}})
        assert extract_value(record, _books_field("doubanRating")) == 7.9

    def test_flat_value_wins_over_nested_path(self):
        """Verifica que un valor plano tiene prioridad sobre la ruta anidada."""
        record = DomainRecord("1", ContentType.BOOKS, {"doubanRating": 9.1, "rating": {"average": 7.9}})
        assert extract_value(record, _books_field("doubanRating")) == 9.1

    def test_absent_value(self):
        """Verifica que un campo ausente retorna ABSENT."""
        record = DomainRecord("1", ContentType.BOOKS, {})
        assert extract_value(record, _books_field("author")) is ABSENT


class TestIsEmpty:
    """Tests para la regla de valores vacios."""

    @pytest.mark.parametrize("value", [None, ABSENT, "", "   ", [], {}])
    def test_empty_values(self, value):
        """Verifica que None, ausente, strings vacios y colecciones vacias son vacios."""
        assert is_empty(value)

    @pytest.mark.parametrize("value", [0, "0", ["a"], False])
    def test_non_empty_values(self, value):
        """Verifica que 0 y False no cuentan como vacios."""
        assert not is_empty(value)


class TestToRemoteValue:
    """Tests para la conversion al formato de escritura de Feishu."""

    @pytest.fixture
    def normalizer(self):
        return ValueNormalizer()

    def test_date_becomes_epoch_millis(self, normalizer):
        """Verifica que las fechas se escriben como timestamp en milisegundos."""
        field = _books_field("markDate")
        assert normalizer.to_remote_value(field, date(2024, 3, 1)) == 1709251200000
        assert normalizer.to_remote_value(field, "2024-03-01") == 1709251200000
        assert normalizer.to_remote_value(
            field, datetime(2024, 3, 1, tzinfo=timezone.utc)
        ) == 1709251200000

    def test_text_list_is_joined_in_order(self, normalizer):
        """Verifica que una lista en columna de texto se une con "," conservando el orden."""
        field = _books_field("myTags")
        assert normalizer.to_remote_value(field, ["b", "a"]) == "b,a"
        assert normalizer.to_remote_value(_books_field("author"), ["A", "", "B"]) == "A,B"

    def test_text_list_canonical_matches_written_text(self, normalizer):
        """Verifica que la lista entrante y el texto que Feishu devuelve tienen la misma forma canonica."""
        field = _books_field("myTags")
        written = normalizer.to_remote_value(field, ["b", "a"])
        assert normalizer.canonical(field, ["b", "a"]) == "b,a"
        assert normalizer.canonical(field, [{"type": "text", "text": written}]) == "b,a"

    def test_url_is_wrapped(self, normalizer):
        """Verifica que una URL se escribe como {link, text}."""
        field = _books_field("coverImage")
        assert normalizer.to_remote_value(field, "https://img/x.jpg") == {
            "link": "https://img/x.jpg",
            "text": "https://img/x.jpg",
        }

    def test_rating_integral_value_is_int(self, normalizer):
        """Verifica que una puntuacion entera se escribe como int."""
        assert normalizer.to_remote_value(_books_field("myRating"), "4") == 4

    def test_empty_is_absent(self, normalizer):
        """Verifica que None y "" se omiten."""
        assert normalizer.to_remote_value(_books_field("author"), None) is ABSENT
        assert normalizer.to_remote_value(_books_field("author"), "") is ABSENT

    def test_invalid_number_raises(self, normalizer):
        """Verifica que un numero invalido lanza ValueError."""
        with pytest.raises(ValueError):
            normalizer.to_remote_value(_books_field("doubanRating"), "n/a")

    def test_to_remote_fields_only_mapped_and_non_empty(self, normalizer):
        """Verifica que el payload solo incluye campos mapeados con valor."""
        mapping = FieldMapping(
            user_id="u1",
            table_key="app:tbl",
            content_type=ContentType.BOOKS,
            columns={"subjectId": "fldS", "title": "fldT", "author": "fldA"},
        )
        record = DomainRecord("100", ContentType.BOOKS, {"title": "Libro", "author": "", "publisher": "X"})
        fields = normalizer.to_remote_fields(record, get_catalog(ContentType.BOOKS), mapping)
        assert fields == {"fldS": "100", "fldT": "Libro"}

    def test_unconvertible_value_is_skipped(self, normalizer):
        """Verifica que un valor no convertible se omite sin invalidar el registro."""
        mapping = FieldMapping("u1", "app:tbl", ContentType.BOOKS, {"subjectId": "fldS", "doubanRating": "fldR"})
        record = DomainRecord("100", ContentType.BOOKS, {"doubanRating": "sin nota"})
        fields = normalizer.to_remote_fields(record, get_catalog(ContentType.BOOKS), mapping)
        assert fields == {"fldS": "100"}


class TestContentHash:
    """Tests para el hash de contenido."""

    @pytest.fixture
    def normalizer(self):
        return ValueNormalizer()

    @pytest.fixture
    def mapping(self):
        return FieldMapping(
            user_id="u1",
            table_key="app:tbl",
            content_type=ContentType.BOOKS,
            columns={
                "subjectId": "fldS",
                "title": "fldT",
                "doubanRating": "fldR",
                "markDate": "fldD",
                "coverImage": "fldC",
            },
        )

    def test_hash_is_stable_regardless_of_value_order(self, normalizer, mapping):
        """Verifica que el orden de insercion de valores no cambia el hash."""
        catalog = get_catalog(ContentType.BOOKS)
        a = DomainRecord("1", ContentType.BOOKS, {"title": "T", "doubanRating": 8})
        b = DomainRecord("1", ContentType.BOOKS, {"doubanRating": 8, "title": "T"})
        assert normalizer.hash_domain_record(a, catalog, mapping) == normalizer.hash_domain_record(b, catalog, mapping)

    def test_domain_and_remote_representations_match(self, normalizer, mapping):
        """Verifica que un registro y su fila escrita en Feishu producen el mismo hash."""
        catalog = get_catalog(ContentType.BOOKS)
        record = DomainRecord(
            "1",
            ContentType.BOOKS,
            {
                "title": "Titulo",
                "rating": {"average": "8.0"},
                "markDate": "2024-03-01",
                "coverImage": "https://img/1.jpg",
                "author": "no mapeado",
            },
        )
        remote = ExternalRecord(
            record_id="rec1",
            fields={
                "fldS": [{"type": "text", "text": "1"}],
                "fldT": "Titulo",
                "fldR": 8,
                "fldD": 1709251200000,
                "fldC": {"link": "https://img/1.jpg", "text": "https://img/1.jpg"},
            },
        )
        assert normalizer.hash_domain_record(record, catalog, mapping) == normalizer.hash_external_record(
            remote, catalog, mapping
        )

    def test_empty_string_and_absent_hash_equal(self, normalizer, mapping):
        """Verifica que "" y un valor ausente producen el mismo hash."""
        catalog = get_catalog(ContentType.BOOKS)
        a = DomainRecord("1", ContentType.BOOKS, {"title": "T", "coverImage": ""})
        b = DomainRecord("1", ContentType.BOOKS, {"title": "T"})
        assert normalizer.hash_domain_record(a, catalog, mapping) == normalizer.hash_domain_record(b, catalog, mapping)

    def test_changed_value_changes_hash(self, normalizer, mapping):
        """Verifica que un cambio en un campo mapeado cambia el hash."""
        catalog = get_catalog(ContentType.BOOKS)
        a = DomainRecord("1", ContentType.BOOKS, {"title": "Old"})
        b = DomainRecord("1", ContentType.BOOKS, {"title": "New"})
        assert normalizer.hash_domain_record(a, catalog, mapping) != normalizer.hash_domain_record(b, catalog, mapping)

    def test_unconvertible_value_excluded_from_both_hashes(self, normalizer, mapping):
        """Verifica que un valor no convertible no entra al hash entrante ni se compara del lado Feishu."""
        catalog = get_catalog(ContentType.BOOKS)
        record = DomainRecord("1", ContentType.BOOKS, {"title": "T", "doubanRating": "N/A"})
        remote = ExternalRecord(record_id="rec1", fields={"fldS": "1", "fldT": "T", "fldR": 7.5})

        incoming, existing = normalizer.content_hashes(record, remote, catalog, mapping)

        assert incoming == existing
        assert incoming == normalizer.hash_domain_record(
            DomainRecord("1", ContentType.BOOKS, {"title": "T"}), catalog, mapping
        )
