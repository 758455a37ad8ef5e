from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from dnsguard.db.base import Base


class Setting(Base):
    __tablename__ = "settings"

    id: Mapped[int] = mapped_column(sa.Integer(), primary_key=True)
    key: Mapped[str] = mapped_column(sa.String(64), unique=True, nullable=False)
    value: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), onupdate=sa.text("NOW()"), nullable=True
    )


DEFAULTS = {
    "webhook_url": "",
}


def get_setting(db, key: str) -> str:
    row = db.query(Setting).filter(Setting.key == key).one_or_none()
    if row:
        return row.value
    return DEFAULTS.get(key, "")


def set_setting(db, key: str, value: str) -> None:
    row = db.query(Setting).filter(Setting.key == key).one_or_none()
    if row:
        row.value = value
    else:
        row = Setting(key=key, value=value)
        db.add(row)
    db.commit()


def get_webhook_url(db) -> str | None:
    return get_setting(db, "webhook_url").strip() or None
