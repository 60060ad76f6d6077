# rifas/api/schemas.py
from datetime import datetime
from decimal import Decimal
from typing import Optional, Any, Dict, List, Union

from pydantic import BaseModel, EmailStr, Field

from rifas.domain import DrawMethod, DrawType, RaffleStatus

TicketRef = Union[int, str]


# -------- Rifas --------
class PrizeIn(BaseModel):
    id: Optional[str] = None
    name: str
    value: Optional[Decimal] = None
    currency: Optional[str] = None
    scheduled_draw_date: Optional[datetime] = None


class CreateRaffleRequest(BaseModel):
    id: Optional[str] = None
    title: str = Field(min_length=1)
    total_tickets: int = Field(ge=1)
    ticket_price: Decimal = Field(ge=0)
    currency: str = "USD"
    prizes: List[PrizeIn] = []
    ticket_digits: Optional[int] = Field(default=None, ge=1, le=9)
    reservation_minutes: Optional[int] = Field(default=None, ge=1)
    draw_date: Optional[datetime] = None
    status: RaffleStatus = RaffleStatus.DRAFT


class SetStatusRequest(BaseModel):
    status: RaffleStatus


# -------- Reservas --------
class BuyerIn(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    phone: Optional[str] = None
    city: Optional[str] = None


class ReserveRequest(BaseModel):
    ticket_numbers: List[TicketRef] = Field(min_length=1)
    buyer: BuyerIn
    ttl_minutes: Optional[int] = Field(default=None, ge=1)
    order_total: Optional[Decimal] = Field(default=None, ge=0)


class ReserveRandomRequest(BaseModel):
    quantity: int = Field(ge=1)
    buyer: BuyerIn
    ttl_minutes: Optional[int] = Field(default=None, ge=1)
    order_total: Optional[Decimal] = Field(default=None, ge=0)


class SampleRequest(BaseModel):
    count: int = Field(ge=1)
    exclude: List[TicketRef] = []


class ReserveResponse(BaseModel):
    reference_code: str
    raffle_id: str
    reserved_until: datetime
    ticket_numbers: List[str]


# -------- Pagos --------
class SubmitProofRequest(BaseModel):
    reference_code: Optional[str] = None
    proof_url: str
    email: Optional[EmailStr] = None


class ProofResponse(BaseModel):
    reference_code: str
    updated: int
    replaced_previous: bool


# -------- Aprobaciones --------
class RejectRequest(BaseModel):
    reason: Optional[str] = None


class ExtendRequest(BaseModel):
    minutes: int = Field(default=30, ge=1)


class BulkRequest(BaseModel):
    reference_codes: List[str] = Field(min_length=1)
    reason: Optional[str] = None


class OrderResultOut(BaseModel):
    reference_code: str
    outcome: str
    ticket_numbers: List[str] = []
    reserved_until: Optional[datetime] = None
    message: Optional[str] = None


class BulkResponse(BaseModel):
    succeeded: int
    failed: int
    results: List[OrderResultOut]
    errors: List[Dict[str, Any]]


# -------- Sorteo --------
class DrawRequest(BaseModel):
    method: DrawMethod
    draw_type: DrawType = DrawType.MAIN_DRAW
    prize_id: Optional[str] = None
    ticket_number: Optional[TicketRef] = None
    lottery_number: Optional[str] = None
    digits: Optional[int] = None
