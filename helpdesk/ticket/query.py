# helpdesk/ticket/query.py
"""Statement construction for listing, updating and counting tickets.

Every user supplied value is passed as a bound parameter; nothing from the
request is interpolated into SQL text.
"""
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Delete, Select, Update, case, delete, func, or_, select, update

from helpdesk.ticket.models import Ticket, utcnow

ALL = "all"
DEFAULT_LIMIT = 1000
DEFAULT_OFFSET = 0
# largest value a 64-bit LIMIT/OFFSET parameter can carry
MAX_PAGE_BOUND = 2**63 - 1

UPDATABLE_FIELDS = ("title", "description", "priority", "status")


@dataclass(frozen=True)
class TicketFilters:
    search: str | None = None
    status: str | None = None
    priority: str | None = None
    limit: int = DEFAULT_LIMIT
    offset: int = DEFAULT_OFFSET


@dataclass(frozen=True)
class Page:
    total: int
    page: int
    total_pages: int


def list_statement(filters: TicketFilters) -> Select:
    stmt = select(Ticket)

    if filters.search:
        term = filters.search.lower()
        # autoescape keeps % and _ in the term literal
        stmt = stmt.where(
            or_(
                func.lower(Ticket.title).contains(term, autoescape=True),
                func.lower(Ticket.description).contains(term, autoescape=True),
            )
        )
    if filters.status and filters.status != ALL:
        stmt = stmt.where(Ticket.status == filters.status)
    if filters.priority and filters.priority != ALL:
        stmt = stmt.where(Ticket.priority == filters.priority)

    return (
        stmt.order_by(Ticket.created_at.desc(), Ticket.id.desc())
        .limit(filters.limit)
        .offset(filters.offset)
    )


def paginate(returned: int, limit: int, offset: int) -> Page:
    # total is the size of this page, not of the whole filtered set
    return Page(
        total=returned,
        page=offset // limit + 1,
        total_pages=math.ceil(returned / limit),
    )


@dataclass(frozen=True)
class TicketChanges:
    """The fixed set of fields an update may touch; ``None`` means absent."""

    title: str | None = None
    description: str | None = None
    priority: str | None = None
    status: str | None = None

    @classmethod
    def from_fields(cls, fields: dict[str, Any]) -> "TicketChanges":
        return cls(**{name: fields[name] for name in UPDATABLE_FIELDS if name in fields})

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in UPDATABLE_FIELDS)


def update_assignments(changes: TicketChanges, now: datetime | None = None) -> dict[str, Any]:
    """One assignment per present field, then the ``updated_at`` refresh."""
    assignments: dict[str, Any] = {}
    if changes.title is not None:
        assignments["title"] = changes.title
    if changes.description is not None:
        assignments["description"] = changes.description
    if changes.priority is not None:
        assignments["priority"] = changes.priority
    if changes.status is not None:
        assignments["status"] = changes.status
    assignments["updated_at"] = now or utcnow()
    return assignments


def update_statement(ticket_id: int, changes: TicketChanges, now: datetime | None = None) -> Update:
    return (
        update(Ticket)
        .where(Ticket.id == ticket_id)
        .values(**update_assignments(changes, now))
        .returning(Ticket)
        .execution_options(populate_existing=True)
    )


def delete_statement(ticket_id: int) -> Delete:
    return delete(Ticket).where(Ticket.id == ticket_id).returning(Ticket)


def stats_statement() -> Select:
    def count_where(condition):
        return func.count(case((condition, 1)))

    return select(
        func.count().label("total"),
        count_where(Ticket.status == "open").label("open"),
        count_where(Ticket.status == "inprogress").label("in_progress"),
        count_where(Ticket.status == "closed").label("closed"),
        count_where(Ticket.priority == "high").label("high_priority"),
        count_where(Ticket.priority == "medium").label("medium_priority"),
        count_where(Ticket.priority == "low").label("low_priority"),
    ).select_from(Ticket)
