"""
Tests del motor de sincronizacion completo (SyncEngine).

Flujo real de servicios contra la tabla Feishu en memoria, el cache en
memoria y SQLite para el mapeo persistido.
"""
import pytest

from catalog_sync.application.services.batch_executor import BatchSyncExecutor
from catalog_sync.application.services.change_detector import ChangeDetector
from catalog_sync.application.services.field_mapping_resolver import FieldMappingResolver
from catalog_sync.application.services.sync_state_tracker import SyncStateTracker
from catalog_sync.application.services.value_normalizer import ValueNormalizer
from catalog_sync.application.use_cases.sync_use_cases import SyncEngine
from catalog_sync.domain.entities.field_catalog import get_catalog
from catalog_sync.domain.entities.sync_models import DomainRecord, SyncOptions
from catalog_sync.shared.constants.sync_constants import ContentType, SyncPhase
from catalog_sync.shared.exceptions.sync import (
    MissingRequiredMappingError,
    RecordValidationError,
    SyncInProgressError,
)


@pytest.fixture
def tracker(cache):
    return SyncStateTracker(cache, ttl_seconds=3600)


@pytest.fixture
def engine(table, cache, session_factory, tracker):
    normalizer = ValueNormalizer()
    resolver = FieldMappingResolver(table, cache, session_factory, creation_base_delay_s=0)
    executor = BatchSyncExecutor(
        table, normalizer=normalizer, tracker=tracker, batch_size=2, delete_delay_s=0
    )
    return SyncEngine(
        client=table,
        resolver=resolver,
        detector=ChangeDetector(normalizer),
        executor=executor,
        tracker=tracker,
    )


@pytest.fixture
def seeded_table(table):
    """Tabla con Subject ID y titulo, y una fila existente 100/"Old"."""
    table.add_column("Subject ID")
    table.add_column("书名")
    table.old_record_id = table.add_row({"Subject ID": "100", "书名": "Old"})
    return table


class TestSyncScenarios:
    """Escenarios de punta a punta."""

    @pytest.mark.asyncio
    async def test_create_and_update(self, engine, seeded_table, books_target, make_book):
        """Verifica que 100 se actualiza y 200 se crea."""
        summary = await engine.sync(
            "u1", books_target, [make_book("100", "New"), make_book("200", "Fresh")]
        )

        assert summary.created == 1
        assert summary.updated == 1
        assert summary.deleted == 0
        assert summary.success
        assert seeded_table.row_by_name(seeded_table.old_record_id)["书名"] == "New"
        new_id = summary.created_records[0]["record_id"]
        assert seeded_table.row_by_name(new_id)["Subject ID"] == "200"

    @pytest.mark.asyncio
    async def test_delete_orphans(self, engine, seeded_table, books_target, make_book):
        """Verifica que con delete_orphans la fila 100 se borra y 200 se crea."""
        summary = await engine.sync(
            "u1", books_target, [make_book("200", "Fresh")], SyncOptions(delete_orphans=True)
        )

        assert summary.created == 1
        assert summary.deleted == 1
        assert seeded_table.delete_calls == [seeded_table.old_record_id]

    @pytest.mark.asyncio
    async def test_second_run_is_idempotent(self, engine, table, books_target, make_book):
        """Verifica que repetir el mismo snapshot no crea columnas ni escribe filas."""
        records = [
            make_book("1", "Libro uno", author="Autor", rating={"average": 8.4}),
            make_book("2", "Libro dos", myTags=["a", "b"], markDate="2024-03-01"),
        ]

        first = await engine.sync("u1", books_target, records)
        columns_created = len(table.create_field_calls)
        second = await engine.sync("u1", books_target, records)

        assert first.created == 2
        assert columns_created == len(get_catalog(ContentType.BOOKS))
        assert second.created == 0
        assert second.updated == 0
        assert second.unchanged == 2
        assert len(table.create_field_calls) == columns_created
        assert table.batch_update_calls == 0

    @pytest.mark.asyncio
    async def test_second_run_idempotent_with_lists_urls_and_unconvertible_values(
        self, engine, table, books_target, make_book
    ):
        """Verifica que listas en texto, URLs y valores no convertibles no generan updates al repetir."""
        records = [
            make_book(
                "1",
                "Libro uno",
                author=["Autor A", "Autor B"],
                myTags=["x", "y"],
                doubanRating="N/A",
                coverImage="https://img/1.jpg",
            ),
            make_book("2", "Libro dos", translator=["T"], rating={"average": 7.9}, myRating=4),
        ]

        first = await engine.sync("u1", books_target, records)
        second = await engine.sync("u1", books_target, records)

        assert first.created == 2
        record_id = next(r["record_id"] for r in first.created_records if r["subject_id"] == "1")
        row = table.row_by_name(record_id)
        assert row["作者"] == "Autor A,Autor B"
        assert "豆瓣评分" not in row
        assert second.updated == 0
        assert second.unchanged == 2
        assert table.batch_update_calls == 0

    @pytest.mark.asyncio
    async def test_full_sync_rewrites_matched_rows(self, engine, seeded_table, books_target, make_book):
        """Verifica que full_sync actualiza aunque no haya cambios."""
        summary = await engine.sync(
            "u1", books_target, [make_book("100", "Old")], SyncOptions(full_sync=True)
        )

        assert summary.updated == 1
        assert summary.unchanged == 0

    @pytest.mark.asyncio
    async def test_partial_failure_reported_in_summary(self, engine, table, books_target, make_book):
        """Verifica que un lote fallido deja success=False sin abortar el resto."""
        table.fail_create_batches = {0}
        records = [make_book(str(i), f"Libro {i}") for i in range(3)]

        summary = await engine.sync("u1", books_target, records)

        assert summary.created == 1
        assert summary.failed == 2
        assert not summary.success
        assert summary.errors[0].operation == "create"

    @pytest.mark.asyncio
    async def test_progress_and_final_state(self, engine, table, books_target, make_book):
        """Verifica el callback de progreso y el estado COMPLETED al terminar."""
        calls = []
        records = [make_book(str(i), "T") for i in range(3)]

        await engine.sync(
            "u1", books_target, records, SyncOptions(on_progress=lambda c, t: calls.append((c, t)))
        )

        assert calls[-1] == (3, 3)
        state = await engine.get_run_state("u1", books_target.table_key)
        assert state.phase == SyncPhase.COMPLETED
        assert state.processed_count == 3


class TestSyncGates:
    """Tests de las validaciones que abortan antes de escribir."""

    @pytest.mark.asyncio
    async def test_missing_subject_id_column_aborts_before_writes(
        self, engine, table, books_target, tracker, make_book
    ):
        """Verifica que sin columna Subject ID no se escribe ninguna fila."""
        table.fail_field_names = {"Subject ID"}

        with pytest.raises(MissingRequiredMappingError) as exc_info:
            await engine.sync("u1", books_target, [make_book("1", "A")])

        assert exc_info.value.missing_fields == ["subjectId"]
        assert table.batch_create_calls == 0
        state = await tracker.get("u1", books_target.table_key)
        assert state.phase == SyncPhase.FAILED

    @pytest.mark.asyncio
    async def test_failed_run_does_not_block_next_one(self, engine, table, books_target, make_book):
        """Verifica que un sync fallido (fase terminal) no bloquea el siguiente."""
        table.fail_field_names = {"Subject ID"}
        with pytest.raises(MissingRequiredMappingError):
            await engine.sync("u1", books_target, [make_book("1", "A")])

        table.fail_field_names = set()
        await engine.clear_mapping_cache(books_target.table_key)
        summary = await engine.sync("u1", books_target, [make_book("1", "A")])

        assert summary.created == 1

    @pytest.mark.asyncio
    async def test_active_run_rejects_second_sync(self, engine, table, books_target, tracker, make_book):
        """Verifica que con un sync activo para el target se lanza SyncInProgressError."""
        await tracker.begin("u1", books_target.table_key, 10)

        with pytest.raises(SyncInProgressError):
            await engine.sync("u1", books_target, [make_book("1", "A")])

        assert table.create_field_calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "records, index",
        [
            ([DomainRecord("", ContentType.BOOKS, {"title": "A"})], 0),
            ([DomainRecord("1", ContentType.BOOKS, {"title": "A"}),
              DomainRecord("1", ContentType.BOOKS, {"title": "B"})], 1),
            ([DomainRecord("1", ContentType.MOVIES, {"title": "A"})], 0),
            ([DomainRecord("1", ContentType.BOOKS, {"title": "A"}),
              DomainRecord("2", ContentType.BOOKS, {"title": ""})], 1),
            ([DomainRecord("1", "vinilos", {"title": "A"})], 0),
        ],
    )
    async def test_invalid_records_rejected_before_remote_calls(
        self, engine, table, books_target, records, index
    ):
        """Verifica que un registro invalido aborta con su indice y sin llamar a Feishu."""
        with pytest.raises(RecordValidationError) as exc_info:
            await engine.sync("u1", books_target, records)

        assert exc_info.value.index == index
        assert table.create_field_calls == []
        assert table.rows == {}


class TestAuxiliaryOperations:
    """Tests de preview y lectura de la tabla."""

    @pytest.mark.asyncio
    async def test_preview_mapping(self, engine, seeded_table, books_target):
        """Verifica que el preview refleja las columnas existentes."""
        preview = await engine.preview_mapping(
            books_target.credentials, books_target.table_key, ContentType.BOOKS
        )

        assert preview.will_match == ["Subject ID", "书名"]
        assert seeded_table.create_field_calls == []

    @pytest.mark.asyncio
    async def test_fetch_existing_rekeys_by_column_id(self, engine, seeded_table, books_target, make_book):
        """Verifica que las filas leidas quedan indexadas por column_id."""
        resolution = await engine.resolver.resolve(
            "u1", books_target.credentials, books_target.table_key, ContentType.BOOKS
        )

        existing = await engine.fetch_existing(books_target, resolution.mapping)

        assert existing[0].fields == {
            seeded_table.column_id("Subject ID"): [{"type": "text", "text": "100"}],
            seeded_table.column_id("书名"): [{"type": "text", "text": "Old"}],
        }

    @pytest.mark.asyncio
    async def test_fetch_existing_duplicate_name_uses_first_column(
        self, engine, seeded_table, books_target, make_book
    ):
        """Verifica que con nombres de columna duplicados las filas se indexan por la primera columna."""
        first_title = seeded_table.column_id("书名")
        duplicate = seeded_table.add_column("书名")

        resolution = await engine.resolver.resolve(
            "u1", books_target.credentials, books_target.table_key, ContentType.BOOKS
        )
        existing = await engine.fetch_existing(books_target, resolution.mapping)
        summary = await engine.sync("u1", books_target, [make_book("100", "Old")])

        assert first_title in existing[0].fields
        assert duplicate.column_id not in existing[0].fields
        assert summary.updated == 0
        assert summary.unchanged == 1
        assert seeded_table.batch_update_calls == 0
