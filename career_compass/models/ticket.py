"""
career_compass/models/ticket.py

Ticket products, balances and purchase intents.
"""

from datetime import datetime
from typing import List, Optional, Tuple
from pydantic import BaseModel, ConfigDict


class TicketProduct(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticket_type: str
    name: str
    description: str
    price: int  # JPY per ticket, zero-decimal currency
    currency: str = "jpy"
    analysis_types: Tuple[str, ...]


class ExpiringBatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticket_id: str
    remaining: int
    expires_at: datetime


class TicketUsage(BaseModel):
    """Per-type balance over non-expired batches."""
    model_config = ConfigDict(frozen=True)

    ticket_type: str
    available: int
    used: int
    total: int
    expires_soon: List[ExpiringBatch] = []


class TicketPurchaseIntent(BaseModel):
    """Everything needed to start a one-time payment. Nothing is persisted."""
    model_config = ConfigDict(frozen=True)

    ticket_type: str
    quantity: int
    unit_price: int
    amount: int
    currency: str
    product_name: str
    description: str
    expires_at: Optional[datetime] = None
