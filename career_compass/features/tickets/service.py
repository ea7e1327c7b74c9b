"""
Ticket accounting.

Tickets are typed, expiring credit batches (usage_tickets rows). A batch
with quantity q and used u has q - u units left; `used` only ever moves by
one through a conditional update so it can never pass `quantity`, even
under concurrent consumption.
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.engine import RowMapping
from sqlalchemy.orm import Session

from career_compass.core.database import usage_tickets
from career_compass.core.dates import add_months, ensure_utc, normalize_now
from career_compass.core.errors import BusinessRuleError, ValidationError
from career_compass.core.repository import UserScopedRepository
from career_compass.features.plans.catalog import (
    ANALYSIS_TYPES,
    EXPIRES_SOON_DAYS,
    MAX_TICKETS_PER_PURCHASE,
    TICKET_PRODUCTS,
    TICKET_VALIDITY_MONTHS,
)
from career_compass.models.ticket import (
    ExpiringBatch,
    TicketProduct,
    TicketPurchaseIntent,
    TicketUsage,
)

logger = logging.getLogger("career_compass")


def list_ticket_products() -> List[TicketProduct]:
    return list(TICKET_PRODUCTS.values())


def get_ticket_product(ticket_type: str) -> TicketProduct:
    product = TICKET_PRODUCTS.get(ticket_type) if isinstance(ticket_type, str) else None
    if product is None:
        raise ValidationError(code="invalid_ticket_type")
    return product


def validate_quantity(quantity) -> int:
    # bool is an int subclass; reject it along with floats and strings
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(code="invalid_quantity")
    if quantity < 1 or quantity > MAX_TICKETS_PER_PURCHASE:
        raise ValidationError(code="invalid_quantity")
    return quantity


def validate_ticket_for_analysis(ticket_type: str, analysis_type: str) -> None:
    """Raise unless `ticket_type` may pay for `analysis_type`."""
    product = get_ticket_product(ticket_type)
    if analysis_type not in ANALYSIS_TYPES:
        raise ValidationError(code="invalid_analysis_type")
    if analysis_type not in product.analysis_types:
        raise BusinessRuleError(code="ticket_mismatch")


def _live_batch_filter(now: datetime):
    """Batches that have not expired (NULL expiry never expires)."""
    return or_(usage_tickets.c.expires_at.is_(None), usage_tickets.c.expires_at > now)


def _remaining(row: RowMapping) -> int:
    return max(int(row["quantity"]) - int(row["used"]), 0)


def get_user_ticket_balance(db: Session, user_id: str, now: Optional[datetime] = None) -> List[TicketUsage]:
    """
    Per-type balance over non-expired batches.

    available = sum(quantity) - sum(used); `expires_soon` lists batches that
    expire within EXPIRES_SOON_DAYS and still have units left. Every known
    ticket type is reported, with zeros when the user holds none.
    """
    current = normalize_now(now)
    soon = current + timedelta(days=EXPIRES_SOON_DAYS)
    rows = UserScopedRepository(db, user_id).fetch_all(
        usage_tickets,
        _live_batch_filter(current),
        order_by=(usage_tickets.c.expires_at.asc(), usage_tickets.c.created_at.asc()),
    )

    by_type: Dict[str, List[RowMapping]] = {ticket_type: [] for ticket_type in TICKET_PRODUCTS}
    for row in rows:
        by_type.setdefault(row["ticket_type"], []).append(row)

    balances = []
    for ticket_type, batches in by_type.items():
        total = sum(int(b["quantity"]) for b in batches)
        used = sum(int(b["used"]) for b in batches)
        expiring = [
            ExpiringBatch(ticket_id=b["id"], remaining=_remaining(b), expires_at=ensure_utc(b["expires_at"]))
            for b in batches
            if b["expires_at"] is not None and ensure_utc(b["expires_at"]) <= soon and _remaining(b) > 0
        ]
        balances.append(
            TicketUsage(
                ticket_type=ticket_type,
                available=max(total - used, 0),
                used=used,
                total=total,
                expires_soon=expiring,
            )
        )
    return balances


def get_available_tickets(db: Session, user_id: str, ticket_type: str, now: Optional[datetime] = None) -> int:
    for usage in get_user_ticket_balance(db, user_id, now):
        if usage.ticket_type == ticket_type:
            return usage.available
    return 0


def _consumable_batches(db: Session, user_id: str, ticket_type: str, now: datetime) -> List[RowMapping]:
    """Eligible batches, earliest expiry first; never-expiring batches last."""
    return UserScopedRepository(db, user_id).fetch_all(
        usage_tickets,
        usage_tickets.c.ticket_type == ticket_type,
        _live_batch_filter(now),
        usage_tickets.c.used < usage_tickets.c.quantity,
        order_by=(
            usage_tickets.c.expires_at.is_(None).asc(),
            usage_tickets.c.expires_at.asc(),
            usage_tickets.c.created_at.asc(),
        ),
    )


def consume_ticket(db: Session, user_id: str, ticket_type: str, now: Optional[datetime] = None) -> Optional[str]:
    """
    Stage consumption of one unit; return the batch id, or None.

    The caller owns the commit. Each candidate is claimed with
    `UPDATE ... SET used = used + 1 WHERE used < quantity`, so a batch that
    a concurrent request emptied is skipped rather than overdrawn.
    """
    current = normalize_now(now)
    for batch in _consumable_batches(db, user_id, ticket_type, current):
        result = db.execute(
            update(usage_tickets)
            .where(
                and_(
                    usage_tickets.c.id == batch["id"],
                    usage_tickets.c.user_id == user_id,
                    usage_tickets.c.used < usage_tickets.c.quantity,
                )
            )
            .values(used=usage_tickets.c.used + 1)
        )
        if result.rowcount == 1:
            return batch["id"]
    return None


def use_ticket(db: Session, user_id: str, ticket_type: str, now: Optional[datetime] = None) -> bool:
    """Consume one ticket of `ticket_type`. False means nothing to consume."""
    get_ticket_product(ticket_type)
    batch_id = consume_ticket(db, user_id, ticket_type, now)
    if batch_id is None:
        db.rollback()
        logger.info("[tickets] none available", extra={"user_id": user_id, "ticket_type": ticket_type})
        return False
    db.commit()
    logger.info("[tickets] consumed", extra={"user_id": user_id, "ticket_type": ticket_type, "ticket_id": batch_id})
    return True


def create_ticket_purchase_intent(ticket_type: str, quantity, now: Optional[datetime] = None) -> TicketPurchaseIntent:
    """Validate and price a purchase request. Performs no persistence."""
    product = get_ticket_product(ticket_type)
    qty = validate_quantity(quantity)
    current = normalize_now(now)
    return TicketPurchaseIntent(
        ticket_type=product.ticket_type,
        quantity=qty,
        unit_price=product.price,
        amount=product.price * qty,
        currency=product.currency,
        product_name=product.name,
        description=product.description,
        expires_at=add_months(current, TICKET_VALIDITY_MONTHS),
    )


def grant_tickets(
    db: Session,
    user_id: str,
    ticket_type: str,
    quantity: int,
    *,
    source: str,
    price_per_unit: int = 0,
    stripe_payment_intent_id: Optional[str] = None,
    stripe_session_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RowMapping:
    """Stage a new ticket batch valid for TICKET_VALIDITY_MONTHS; the caller commits."""
    get_ticket_product(ticket_type)
    if quantity < 1:
        raise ValidationError(code="invalid_quantity")
    current = normalize_now(now)
    return UserScopedRepository(db, user_id).insert(
        usage_tickets,
        {
            "ticket_type": ticket_type,
            "quantity": quantity,
            "used": 0,
            "price_per_unit": price_per_unit,
            "total_amount": price_per_unit * quantity,
            "source": source,
            "stripe_payment_intent_id": stripe_payment_intent_id,
            "stripe_session_id": stripe_session_id,
            "expires_at": add_months(current, TICKET_VALIDITY_MONTHS),
            "created_at": current,
        },
    )
