# helpdesk/ticket/services.py
from typing import Any

from loguru import logger
from sqlalchemy.orm import Session

from helpdesk.core.errors import NotFoundError, ValidationError, store_errors
from helpdesk.ticket.models import INITIAL_STATUS, MAX_TICKET_ID, MIN_TICKET_ID, Ticket
from helpdesk.ticket.query import (
    Page,
    TicketChanges,
    TicketFilters,
    delete_statement,
    list_statement,
    paginate,
    stats_statement,
    update_statement,
)
from helpdesk.ticket.schemas import TicketCreate, TicketUpdate
from helpdesk.ticket.validation import normalize_choice, sanitize, validate


def parse_ticket_id(raw: Any) -> int:
    try:
        ticket_id = int(str(raw).strip())
    except (TypeError, ValueError):
        raise ValidationError("Invalid ticket ID") from None
    # ids are 64-bit integers; anything wider cannot match a row
    if not MIN_TICKET_ID <= ticket_id <= MAX_TICKET_ID:
        raise NotFoundError("Ticket not found")
    return ticket_id


def _require_valid(data: dict[str, Any], is_update: bool = False) -> None:
    errors = validate(data, is_update=is_update)
    if errors:
        raise ValidationError("Validation failed", errors)


def list_tickets(db: Session, filters: TicketFilters) -> tuple[list[Ticket], Page]:
    with store_errors("fetch tickets"):
        tickets = list(db.scalars(list_statement(filters)))
    return tickets, paginate(len(tickets), filters.limit, filters.offset)


def get_ticket(db: Session, ticket_id: int) -> Ticket:
    with store_errors("fetch ticket"):
        ticket = db.get(Ticket, ticket_id)
    if ticket is None:
        raise NotFoundError("Ticket not found")
    return ticket


def create_ticket(db: Session, payload: TicketCreate) -> Ticket:
    data = {
        "title": sanitize(payload.title),
        "description": sanitize(payload.description),
        "priority": normalize_choice(payload.priority),
    }
    _require_valid(data)

    with store_errors("create ticket"):
        db_ticket = Ticket(**data, status=INITIAL_STATUS)
        db.add(db_ticket)
        db.commit()
        db.refresh(db_ticket)
    logger.info("Ticket created successfully: ID {}", db_ticket.id)
    return db_ticket


def update_ticket(db: Session, ticket_id: int, payload: TicketUpdate) -> Ticket:
    get_ticket(db, ticket_id)

    supplied = payload.model_dump(exclude_unset=True)
    updates: dict[str, Any] = {}
    for field in ("title", "description"):
        if field in supplied:
            updates[field] = sanitize(supplied[field])
    for field in ("priority", "status"):
        if field in supplied:
            updates[field] = normalize_choice(supplied[field])

    _require_valid(updates, is_update=True)

    changes = TicketChanges.from_fields(updates)
    if changes.is_empty():
        raise ValidationError("No valid fields to update")

    with store_errors("update ticket"):
        updated = db.scalars(update_statement(ticket_id, changes)).first()
        db.commit()
    # the row can disappear between the lookup above and the UPDATE
    if updated is None:
        raise NotFoundError("Ticket not found")
    logger.info("Ticket updated successfully: ID {}", ticket_id)
    return updated


def delete_ticket(db: Session, ticket_id: int) -> Ticket:
    with store_errors("delete ticket"):
        deleted = db.scalars(delete_statement(ticket_id)).first()
        db.commit()
    if deleted is None:
        raise NotFoundError("Ticket not found")
    logger.info("Ticket deleted successfully: ID {}", ticket_id)
    return deleted


def ticket_stats(db: Session) -> dict[str, Any]:
    with store_errors("fetch statistics"):
        row = db.execute(stats_statement()).one()
    return {
        "total": row.total,
        "status": {"open": row.open, "inProgress": row.in_progress, "closed": row.closed},
        "priority": {"high": row.high_priority, "medium": row.medium_priority, "low": row.low_priority},
    }
