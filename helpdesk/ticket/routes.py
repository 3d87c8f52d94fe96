# helpdesk/ticket/routes.py
from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from helpdesk.core.database import get_db
from helpdesk.ticket import services as ticket_service
from helpdesk.ticket.query import DEFAULT_LIMIT, DEFAULT_OFFSET, MAX_PAGE_BOUND, TicketFilters
from helpdesk.ticket.schemas import (
    TicketCreate,
    TicketDeleted,
    TicketOut,
    TicketPage,
    TicketStats,
    TicketUpdate,
)

router = APIRouter(prefix="/tickets", tags=["Tickets"])
stats_router = APIRouter(tags=["Stats"])
# Paths the existing browser client calls
legacy_router = APIRouter(include_in_schema=False)


def ticket_filters(
    search: str | None = Query(default=None, description="Case-insensitive match on title or description"),
    status: str | None = Query(default=None, description="open, inprogress, closed or all"),
    priority: str | None = Query(default=None, description="low, medium, high or all"),
    limit: int = Query(default=DEFAULT_LIMIT, ge=1, le=MAX_PAGE_BOUND),
    offset: int = Query(default=DEFAULT_OFFSET, ge=0, le=MAX_PAGE_BOUND),
) -> TicketFilters:
    return TicketFilters(search=search, status=status, priority=priority, limit=limit, offset=offset)


@router.get("", response_model=TicketPage)
def list_all(filters: TicketFilters = Depends(ticket_filters), db: Session = Depends(get_db)):
    tickets, page = ticket_service.list_tickets(db, filters)
    return TicketPage(
        tickets=[TicketOut.model_validate(t) for t in tickets],
        total=page.total,
        page=page.page,
        total_pages=page.total_pages,
    )


@router.post("", response_model=TicketOut, status_code=201)
def create(ticket: TicketCreate | None = Body(default=None), db: Session = Depends(get_db)):
    return ticket_service.create_ticket(db, ticket or TicketCreate())


@router.get("/{ticket_id}", response_model=TicketOut)
def get(ticket_id: str, db: Session = Depends(get_db)):
    return ticket_service.get_ticket(db, ticket_service.parse_ticket_id(ticket_id))


@router.put("/{ticket_id}", response_model=TicketOut)
def update(ticket_id: str, ticket: TicketUpdate | None = Body(default=None), db: Session = Depends(get_db)):
    return ticket_service.update_ticket(db, ticket_service.parse_ticket_id(ticket_id), ticket or TicketUpdate())


@router.delete("/{ticket_id}", response_model=TicketDeleted)
def delete(ticket_id: str, db: Session = Depends(get_db)):
    deleted = ticket_service.delete_ticket(db, ticket_service.parse_ticket_id(ticket_id))
    return TicketDeleted(message="Ticket deleted successfully", ticket=TicketOut.model_validate(deleted))


@stats_router.get("/stats", response_model=TicketStats)
def stats(db: Session = Depends(get_db)):
    return ticket_service.ticket_stats(db)


legacy_router.add_api_route("/getAllTickets", list_all, methods=["GET"], response_model=TicketPage)
legacy_router.add_api_route("/createTicket", create, methods=["POST"], response_model=TicketOut, status_code=201)
legacy_router.add_api_route("/ticket/{ticket_id}", get, methods=["GET"], response_model=TicketOut)
legacy_router.add_api_route("/ticket/{ticket_id}", update, methods=["PUT"], response_model=TicketOut)
legacy_router.add_api_route("/ticket/{ticket_id}", delete, methods=["DELETE"], response_model=TicketDeleted)
