"""
Ticket API routes.

- GET  /api/tickets                          balance per ticket type
- POST /api/tickets                          price a purchase (no persistence)
- POST /api/tickets/use                      consume one ticket for an analysis
- POST /api/tickets/create-checkout-session  start a one-time payment
- GET  /api/tickets/products                 product table
"""
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from career_compass.core.auth import get_current_user_id
from career_compass.core.database import get_db
from career_compass.core.errors import BusinessRuleError
from career_compass.features.billing.provider import BillingProvider
from career_compass.features.billing.service import create_ticket_checkout, get_provider
from career_compass.features.tickets.service import (
    create_ticket_purchase_intent,
    get_available_tickets,
    get_user_ticket_balance,
    list_ticket_products,
    use_ticket,
    validate_ticket_for_analysis,
)

router = APIRouter(prefix="/api/tickets", tags=["tickets"])


class TicketPurchaseRequest(BaseModel):
    ticket_type: Optional[str] = None
    # Validated by the ticket service so that 3.0, "3" and true are rejected
    quantity: Any = None


class TicketUseRequest(BaseModel):
    ticket_type: Optional[str] = None
    analysis_type: Optional[str] = None


@router.get("")
def get_tickets(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return {"tickets": [t.model_dump(mode="json") for t in get_user_ticket_balance(db, user_id)]}


@router.post("")
def post_purchase_intent(body: TicketPurchaseRequest, user_id: str = Depends(get_current_user_id)):
    intent = create_ticket_purchase_intent(body.ticket_type, body.quantity)
    return {"intent": intent.model_dump(mode="json")}


@router.post("/use")
def post_use_ticket(body: TicketUseRequest, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    validate_ticket_for_analysis(body.ticket_type, body.analysis_type)
    if not use_ticket(db, user_id, body.ticket_type):
        raise BusinessRuleError(code="no_ticket_available")
    return {
        "success": True,
        "remaining": get_available_tickets(db, user_id, body.ticket_type),
    }


@router.post("/create-checkout-session")
def post_ticket_checkout(
    body: TicketPurchaseRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    provider: BillingProvider = Depends(get_provider),
):
    return create_ticket_checkout(db, provider, user_id, body.ticket_type, body.quantity)


@router.get("/products")
def get_products():
    return {"products": [p.model_dump(mode="json") for p in list_ticket_products()]}
