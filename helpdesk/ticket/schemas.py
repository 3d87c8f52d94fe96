# helpdesk/ticket/schemas.py
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from helpdesk.ticket.models import DEFAULT_PRIORITY


# Request bodies are typed loosely on purpose: wrong types are reported by
# helpdesk.ticket.validation with the same messages as missing values.
class TicketCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: Any = None
    description: Any = None
    priority: Any = DEFAULT_PRIORITY


class TicketUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: Any = None
    description: Any = None
    priority: Any = None
    status: Any = None


class TicketOut(BaseModel):
    id: int
    title: str
    description: str
    priority: str
    status: str
    created_at: datetime
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class TicketPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tickets: list[TicketOut]
    total: int
    page: int
    total_pages: int = Field(alias="totalPages")


class TicketDeleted(BaseModel):
    message: str
    ticket: TicketOut


class StatusCounts(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    open: int
    in_progress: int = Field(alias="inProgress")
    closed: int


class PriorityCounts(BaseModel):
    high: int
    medium: int
    low: int


class TicketStats(BaseModel):
    total: int
    status: StatusCounts
    priority: PriorityCounts
