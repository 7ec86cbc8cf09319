"""Schema metadata table recording the applied migration version."""
from sqlalchemy import Column, String, Table

from shiori.models.base import Base

# Single-row table; no primary key so it is mapped with Core only
shiori_system = Table(
    "shiori_system",
    Base.metadata,
    Column("database_schema_version", String(12), nullable=False),
)
