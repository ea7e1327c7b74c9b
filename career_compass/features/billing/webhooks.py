"""
Stripe webhook reconciliation.

1. Verify signature (provider)
2. Record the event id; skip deliveries already processed
3. Apply local state changes for the event type
4. Mark processed, or store the error and re-raise

Notifications are written after the state change commits and never
abort it.
"""
import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import and_, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from career_compass.core.database import billing_events, user_subscriptions
from career_compass.core.dates import add_months, normalize_now
from career_compass.core.repository import UserScopedRepository
from career_compass.features.billing.provider import BillingEvent, BillingProvider
from career_compass.features.notifications.service import notify
from career_compass.features.plans.catalog import PLANS, TICKET_PRODUCTS
from career_compass.features.profiles.service import set_subscription_status
from career_compass.features.tickets.service import grant_tickets

logger = logging.getLogger("career_compass")

PERIOD_MONTHS = {"monthly": 1, "yearly": 12}


def _ts(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), timezone.utc)


def _claim_event(db: Session, event: BillingEvent, body: bytes) -> bool:
    """Insert the delivery record. False when this event was already handled."""
    existing = db.execute(
        select(billing_events.c.processed).where(billing_events.c.stripe_event_id == event.event_id)
    ).first()
    if existing is not None:
        return not existing.processed

    try:
        db.execute(
            insert(billing_events).values(
                stripe_event_id=event.event_id,
                event_type=event.event_type,
                payload_hash=hashlib.sha256(body).hexdigest(),
                processed=False,
            )
        )
        db.commit()
    except IntegrityError:
        # Concurrent delivery of the same event
        db.rollback()
        return False
    return True


def _activate_subscription(db: Session, data: Dict[str, Any], now: datetime) -> Optional[str]:
    metadata = data.get("metadata") or {}
    user_id = metadata.get("user_id")
    plan_id = metadata.get("plan_id")
    billing_cycle = metadata.get("billing_cycle") or "monthly"
    stripe_subscription_id = data.get("subscription")
    if not user_id or plan_id not in PLANS:
        logger.warning("[webhook] subscription checkout without usable metadata", extra={"session_id": data.get("id")})
        return None

    repo = UserScopedRepository(db, user_id)
    period_end = add_months(now, PERIOD_MONTHS.get(billing_cycle, 1))
    existing = None
    if stripe_subscription_id:
        existing = repo.fetch_one(
            user_subscriptions,
            user_subscriptions.c.stripe_subscription_id == stripe_subscription_id,
        )

    # At most one active subscription per user
    stale = [user_subscriptions.c.status == "active"]
    if existing:
        stale.append(user_subscriptions.c.id != existing["id"])
    repo.update(
        user_subscriptions,
        {"status": "canceled", "canceled_at": now, "updated_at": now},
        *stale,
    )
    values = {
        "plan_id": plan_id,
        "billing_cycle": billing_cycle,
        "status": "active",
        "stripe_customer_id": data.get("customer"),
        "stripe_subscription_id": stripe_subscription_id,
        "current_period_start": now,
        "current_period_end": period_end,
        "cancel_at_period_end": False,
        "canceled_at": None,
        "updated_at": now,
    }
    if existing:
        repo.update(user_subscriptions, values, user_subscriptions.c.id == existing["id"])
    else:
        repo.insert(user_subscriptions, {**values, "created_at": now})
    set_subscription_status(db, user_id, plan_id)
    return user_id


def _record_ticket_purchase(db: Session, data: Dict[str, Any], now: datetime) -> Optional[str]:
    metadata = data.get("metadata") or {}
    user_id = metadata.get("user_id")
    ticket_type = metadata.get("ticket_type")
    try:
        quantity = int(metadata.get("quantity") or 0)
    except (TypeError, ValueError):
        quantity = 0
    if not user_id or ticket_type not in TICKET_PRODUCTS or quantity < 1:
        logger.warning("[webhook] ticket checkout without usable metadata", extra={"session_id": data.get("id")})
        return None

    grant_tickets(
        db,
        user_id,
        ticket_type,
        quantity,
        source="purchase",
        price_per_unit=TICKET_PRODUCTS[ticket_type].price,
        stripe_payment_intent_id=data.get("payment_intent"),
        stripe_session_id=data.get("id"),
        now=now,
    )
    return user_id


def _subscription_row(db: Session, stripe_subscription_id: Optional[str]):
    if not stripe_subscription_id:
        return None
    # Processor ids are global; the owner is read off the row.
    return db.execute(
        select(user_subscriptions).where(user_subscriptions.c.stripe_subscription_id == stripe_subscription_id)
    ).mappings().first()


def _sync_subscription(db: Session, data: Dict[str, Any], now: datetime, *, deleted: bool) -> Optional[str]:
    row = _subscription_row(db, data.get("id"))
    if row is None:
        logger.info("[webhook] subscription not tracked locally", extra={"stripe_subscription_id": data.get("id")})
        return None

    user_id = row["user_id"]
    status = "canceled" if deleted else (data.get("status") or row["status"])
    if status == "paused" or (data.get("pause_collection") and not deleted):
        status = "paused"
    values: Dict[str, Any] = {"status": status, "updated_at": now}
    if deleted:
        values["canceled_at"] = now
    else:
        values["cancel_at_period_end"] = bool(data.get("cancel_at_period_end"))
        period_end = _ts(data.get("current_period_end"))
        if period_end:
            values["current_period_end"] = period_end
        plan_id = (data.get("metadata") or {}).get("plan_id")
        if plan_id in PLANS:
            values["plan_id"] = plan_id

    UserScopedRepository(db, user_id).update(user_subscriptions, values, user_subscriptions.c.id == row["id"])
    set_subscription_status(db, user_id, values.get("plan_id", row["plan_id"]) if status == "active" else "free")
    return user_id


def _notify_for(db: Session, event: BillingEvent, user_id: Optional[str]) -> None:
    if not user_id:
        return
    data = event.data
    if event.event_type == "checkout.session.completed":
        metadata = data.get("metadata") or {}
        if data.get("mode") == "payment":
            notify(db, user_id, "ticket_purchased", "チケット購入完了",
                   f"{metadata.get('quantity')}枚のチケットが追加されました", {"session_id": data.get("id")})
        else:
            plan = PLANS.get(metadata.get("plan_id"))
            notify(db, user_id, "subscription_activated", "プラン登録完了",
                   f"{plan.name if plan else ''}プランへの登録が完了しました", {"session_id": data.get("id")})
    elif event.event_type == "invoice.payment_failed":
        notify(db, user_id, "payment_failed", "お支払いに失敗しました",
               "お支払い方法をご確認ください", {"invoice_id": data.get("id")})


def _apply_event(db: Session, event: BillingEvent, now: datetime) -> Optional[str]:
    data = event.data
    if event.event_type == "checkout.session.completed":
        if data.get("mode") == "subscription":
            return _activate_subscription(db, data, now)
        if data.get("mode") == "payment" and (data.get("metadata") or {}).get("type") == "ticket_purchase":
            return _record_ticket_purchase(db, data, now)
        return None
    if event.event_type == "customer.subscription.updated":
        return _sync_subscription(db, data, now, deleted=False)
    if event.event_type == "customer.subscription.deleted":
        return _sync_subscription(db, data, now, deleted=True)
    if event.event_type == "invoice.payment_failed":
        row = _subscription_row(db, data.get("subscription"))
        return row["user_id"] if row else None
    logger.info("[webhook] ignored event type", extra={"event_type": event.event_type})
    return None


def process_webhook_event(
    db: Session,
    provider: BillingProvider,
    headers: Dict[str, str],
    body: bytes,
    now: Optional[datetime] = None,
) -> BillingEvent:
    """
    Verify and apply a webhook delivery (idempotent by event id).

    Raises:
        BillingWebhookError: signature or payload invalid
    """
    event = provider.construct_event(headers, body)
    current = normalize_now(now)

    if not _claim_event(db, event, body):
        logger.info("[webhook] duplicate delivery skipped", extra={"event_id": event.event_id})
        return event

    try:
        user_id = _apply_event(db, event, current)
        db.execute(
            update(billing_events)
            .where(billing_events.c.stripe_event_id == event.event_id)
            .values(processed=True, processed_at=current, error=None)
        )
        db.commit()
    except Exception as e:
        db.rollback()
        db.execute(
            update(billing_events)
            .where(and_(billing_events.c.stripe_event_id == event.event_id, billing_events.c.processed.is_(False)))
            .values(error=str(e)[:1000])
        )
        db.commit()
        logger.error("[webhook] processing failed", extra={"event_id": event.event_id, "event_type": event.event_type}, exc_info=True)
        raise

    logger.info("[webhook] processed", extra={"event_id": event.event_id, "event_type": event.event_type, "user_id": user_id})
    _notify_for(db, event, user_id)
    return event
