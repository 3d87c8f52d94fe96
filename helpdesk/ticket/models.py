# helpdesk/ticket/models.py
from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.core.database import Base

PRIORITIES = ("low", "medium", "high")
STATUSES = ("open", "inprogress", "closed")

DEFAULT_PRIORITY = "medium"
INITIAL_STATUS = "open"

MIN_TICKET_ID = -(2**63)
MAX_TICKET_ID = 2**63 - 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Ticket(Base):
    __tablename__ = "tickets"
    # AUTOINCREMENT keeps sqlite from handing out the id of a deleted row again
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default=DEFAULT_PRIORITY, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=INITIAL_STATUS, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=utcnow)
