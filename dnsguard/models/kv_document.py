from __future__ import annotations

from datetime import datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from dnsguard.db.base import Base

# Use JSONB on PostgreSQL, plain JSON on SQLite (for tests)
JSONVariant = sa.JSON().with_variant(JSONB, "postgresql")


class KVDocument(Base):
    __tablename__ = "kv_documents"

    key: Mapped[str] = mapped_column(sa.String(512), primary_key=True)
    value: Mapped[Any] = mapped_column(JSONVariant, nullable=False)

    # Bumped on every write; compare-and-set matches on it
    version: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="1")

    expires_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True, index=True
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=True
    )
