"""
Modelos de base de datos (ORM).
"""
from sqlalchemy import Column, String, Integer, DateTime, JSON, UniqueConstraint
from sqlalchemy.sql import func

from catalog_sync.infrastructure.database.session import Base


class FieldMappingModel(Base):
    """
    Mapeo persistido domain_name -> column_id de una tabla Feishu.

    Una fila por (user_id, table_key); table_key = "<app_token>:<table_id>".
    """

    __tablename__ = "field_mappings"
    __table_args__ = (
        UniqueConstraint("user_id", "table_key", name="uq_field_mappings_user_table"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    table_key = Column(String(255), nullable=False)
    content_type = Column(String(32), nullable=False)
    strategy = Column(String(64), nullable=False)
    strategy_version = Column(String(16), nullable=False)
    columns = Column(JSON, nullable=False, default=dict)  # {domain_name: column_id}
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<FieldMapping(user_id={self.user_id}, table_key={self.table_key}, type={self.content_type})>"
