"""
Tests del repositorio de mapeos sobre SQLite en memoria.
"""
import pytest

from catalog_sync.domain.entities.sync_models import FieldMapping
from catalog_sync.infrastructure.repositories.field_mapping_repository import FieldMappingRepository
from catalog_sync.shared.constants.sync_constants import ContentType


def _mapping(table_key="bascnTEST:tblBOOKS", user_id="u1", **columns):
    return FieldMapping(
        user_id=user_id,
        table_key=table_key,
        content_type=ContentType.BOOKS,
        columns=columns or {"subjectId": "fld1", "title": "fld2"},
    )


class TestFieldMappingRepository:
    """Tests de get/save/delete/list_by_user."""

    @pytest.mark.asyncio
    async def test_save_and_get(self, db_session):
        """Verifica que un mapeo guardado se recupera igual."""
        repo = FieldMappingRepository(db_session)

        await repo.save(_mapping())
        stored = await repo.get("u1", "bascnTEST:tblBOOKS")

        assert stored.columns == {"subjectId": "fld1", "title": "fld2"}
        assert stored.content_type == ContentType.BOOKS
        assert stored.updated_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_save_is_upsert(self, db_session):
        """Verifica que guardar dos veces el mismo (user, tabla) actualiza la fila."""
        repo = FieldMappingRepository(db_session)

        await repo.save(_mapping())
        await repo.save(_mapping(subjectId="fld1", title="fld2", author="fld3"))

        mappings = await repo.list_by_user("u1")
        assert len(mappings) == 1
        assert mappings[0].columns["author"] == "fld3"

    @pytest.mark.asyncio
    async def test_get_missing(self, db_session):
        assert await FieldMappingRepository(db_session).get("u1", "nope:tbl") is None

    @pytest.mark.asyncio
    async def test_delete(self, db_session):
        """Verifica que delete informa si habia algo que borrar."""
        repo = FieldMappingRepository(db_session)
        await repo.save(_mapping())

        assert await repo.delete("u1", "bascnTEST:tblBOOKS") is True
        assert await repo.delete("u1", "bascnTEST:tblBOOKS") is False
        assert await repo.get("u1", "bascnTEST:tblBOOKS") is None

    @pytest.mark.asyncio
    async def test_list_by_user_is_scoped_and_ordered(self, db_session):
        """Verifica que list_by_user filtra por usuario y ordena por tabla."""
        repo = FieldMappingRepository(db_session)
        await repo.save(_mapping("bascnTEST:tblZ"))
        await repo.save(_mapping("bascnTEST:tblA"))
        await repo.save(_mapping("bascnTEST:tblA", user_id="u2"))

        mappings = await repo.list_by_user("u1")

        assert [m.table_key for m in mappings] == ["bascnTEST:tblA", "bascnTEST:tblZ"]
