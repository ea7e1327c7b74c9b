"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults (static pool for in-memory SQLite)
- Test database support
- Table definitions for every persisted entity
"""
from typing import Optional, Generator
from contextlib import contextmanager
from uuid import uuid4
from sqlalchemy import (
    create_engine,
    MetaData,
    Table,
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    JSON,
    Text,
    Index,
    CheckConstraint,
    text,
    false,
)
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.sql import func
import logging
import os

from career_compass.core.config import settings

logger = logging.getLogger("career_compass")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def new_id() -> str:
    return str(uuid4())


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if url.startswith("sqlite"):
        # One shared connection so every session sees the same in-memory database
        _engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
            echo=False,
        )

    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions outside a request (workers, scripts).

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI-friendly DB dependency that yields a request-scoped Session.

    Services commit their own units of work; anything left open when the
    request ends is rolled back.
    """
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


# Profiles: exactly one per authenticated user
profiles = Table(
    'profiles',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('email', String(320), nullable=True, index=True),
    Column('full_name', Text, nullable=True),
    Column('subscription_status', String(50), nullable=False, server_default='free'),
    Column('onboarding_completed', Boolean, nullable=False, server_default=false()),
    Column('onboarding_step', Integer, nullable=False, server_default=text('0')),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
)

# Paid plan instances (one active row per user by convention)
user_subscriptions = Table(
    'user_subscriptions',
    metadata,
    Column('id', String(100), primary_key=True, default=new_id),
    Column('user_id', String(100), nullable=False),
    Column('plan_id', String(50), nullable=False),
    Column('billing_cycle', String(20), nullable=True),
    Column('status', String(50), nullable=False),
    Column('stripe_customer_id', String(255), nullable=True),
    Column('stripe_subscription_id', String(255), nullable=True, unique=True),
    Column('current_period_start', DateTime(timezone=True), nullable=True),
    Column('current_period_end', DateTime(timezone=True), nullable=True),
    Column('cancel_at_period_end', Boolean, nullable=False, server_default=false()),
    Column('canceled_at', DateTime(timezone=True), nullable=True),
    Column('paused_at', DateTime(timezone=True), nullable=True),
    Column('pause_until', DateTime(timezone=True), nullable=True),
    Column('downgraded_from', String(50), nullable=True),
    Column('downgraded_at', DateTime(timezone=True), nullable=True),
    Column('retention_offer_applied', Boolean, nullable=False, server_default=false()),
    Column('retention_offer_type', String(50), nullable=True),
    Column('retention_offer_date', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_user_subscriptions_user_status', 'user_id', 'status'),
)

# Metered actions (analysis runs); counted per calendar month
usage_events = Table(
    'usage_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False),
    Column('usage_key', String(100), nullable=False),
    Column('occurred_at', DateTime(timezone=True), nullable=False),
    Column('metadata', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_usage_events_user_key_occurred', 'user_id', 'usage_key', 'occurred_at'),
)

# Ticket batches (purchased or granted)
usage_tickets = Table(
    'usage_tickets',
    metadata,
    Column('id', String(100), primary_key=True, default=new_id),
    Column('user_id', String(100), nullable=False),
    Column('ticket_type', String(50), nullable=False),
    Column('quantity', Integer, nullable=False),
    Column('used', Integer, nullable=False, server_default=text('0')),
    Column('price_per_unit', Integer, nullable=False, server_default=text('0')),
    Column('total_amount', Integer, nullable=False, server_default=text('0')),
    Column('source', String(50), nullable=False, server_default='purchase'),
    Column('stripe_payment_intent_id', String(255), nullable=True),
    Column('stripe_session_id', String(255), nullable=True, unique=True),
    Column('expires_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    CheckConstraint('quantity > 0', name='ck_usage_tickets_quantity_positive'),
    CheckConstraint('used >= 0 AND used <= quantity', name='ck_usage_tickets_used_bounds'),
    Index('idx_usage_tickets_user_type_expires', 'user_id', 'ticket_type', 'expires_at'),
)

# Saved analysis results
ai_analyses = Table(
    'ai_analyses',
    metadata,
    Column('id', String(100), primary_key=True, default=new_id),
    Column('user_id', String(100), nullable=False),
    Column('analysis_type', String(50), nullable=False),
    Column('title', Text, nullable=False),
    Column('input_data', JSON, nullable=False),
    Column('result', JSON, nullable=False),
    Column('tags', JSON, nullable=True),
    Column('is_favorite', Boolean, nullable=False, server_default=false()),
    Column('expires_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_ai_analyses_user_created', 'user_id', 'created_at'),
    Index('idx_ai_analyses_expires_at', 'expires_at'),
)

# Referral codes and their referee pairing
referrals = Table(
    'referrals',
    metadata,
    Column('id', String(100), primary_key=True, default=new_id),
    Column('referrer_id', String(100), nullable=False, index=True),
    Column('referee_id', String(100), nullable=True, index=True),
    Column('referral_code', String(32), nullable=False, unique=True),
    Column('status', String(20), nullable=False, server_default='pending'),
    Column('reward_type', String(50), nullable=False, server_default='analysis_normal'),
    Column('reward_value', Integer, nullable=False, server_default=text('0')),
    Column('expires_at', DateTime(timezone=True), nullable=False),
    Column('completed_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

goals = Table(
    'goals',
    metadata,
    Column('id', String(100), primary_key=True, default=new_id),
    Column('user_id', String(100), nullable=False, index=True),
    Column('title', Text, nullable=False),
    Column('description', Text, nullable=True),
    Column('priority', String(20), nullable=True),
    Column('target_date', String(32), nullable=True),
    Column('status', String(20), nullable=False, server_default='active'),
    Column('completed_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
)

tasks = Table(
    'tasks',
    metadata,
    Column('id', String(100), primary_key=True, default=new_id),
    Column('user_id', String(100), nullable=False, index=True),
    Column('goal_id', String(100), nullable=True, index=True),
    Column('title', Text, nullable=False),
    Column('description', Text, nullable=True),
    Column('priority', String(20), nullable=True),
    Column('due_date', String(32), nullable=True),
    Column('status', String(20), nullable=False, server_default='pending'),
    Column('completed_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
)

user_activities = Table(
    'user_activities',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False),
    Column('activity_type', String(100), nullable=False),
    Column('activity_data', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_user_activities_user_created', 'user_id', 'created_at'),
)

subscription_cancellations = Table(
    'subscription_cancellations',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('subscription_id', String(100), nullable=False),
    Column('reason_code', String(100), nullable=True),
    Column('reason_text', Text, nullable=True),
    Column('canceled_at', DateTime(timezone=True), nullable=False),
)

retention_offers = Table(
    'retention_offers',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('subscription_id', String(100), nullable=False),
    Column('offer_type', String(50), nullable=False),
    Column('offer_value', Text, nullable=True),
    Column('applied_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

notifications = Table(
    'notifications',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('type', String(50), nullable=False),
    Column('title', Text, nullable=False),
    Column('message', Text, nullable=False),
    Column('data', JSON, nullable=True),
    Column('is_read', Boolean, nullable=False, server_default=false()),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

contact_messages = Table(
    'contact_messages',
    metadata,
    Column('id', String(100), primary_key=True, default=new_id),
    Column('name', Text, nullable=False),
    Column('email', String(320), nullable=False),
    Column('category', String(50), nullable=False),
    Column('subject', Text, nullable=False),
    Column('message', Text, nullable=False),
    Column('urgent', Boolean, nullable=False, server_default=false()),
    Column('status', String(20), nullable=False, server_default='unread'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Stripe webhook deliveries (idempotency by event id)
billing_events = Table(
    'billing_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_event_id', String(255), unique=True, nullable=False),
    Column('event_type', String(100), nullable=False),
    Column('payload_hash', String(64), nullable=False),
    Column('processed', Boolean, nullable=False, server_default=false()),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    Column('error', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_billing_events_type_created', 'event_type', 'created_at'),
)
