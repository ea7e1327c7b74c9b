"""
Billing provider protocol.

Defines the interface the checkout, subscription and webhook services use
to talk to the payment processor. Services receive a provider instance
through dependency injection; tests pass a fake.
"""
from typing import Protocol, Dict, Any, List, Optional
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class CheckoutSession:
    """Processor checkout session handle."""
    session_id: str
    url: Optional[str]


@dataclass(frozen=True)
class CheckoutLineItem:
    """One-time line item priced from the local product table."""
    name: str
    description: str
    unit_amount: int
    currency: str
    quantity: int


@dataclass
class BillingEvent:
    """A verified webhook delivery."""
    event_id: str
    event_type: str
    data: Dict[str, Any]
    created: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Customer lookup and creation
    - Subscription and one-time checkout sessions
    - One-off coupons
    - Subscription cancel and pause
    - Webhook signature verification and parsing
    """

    def find_or_create_customer(self, email: Optional[str], user_id: str, name: Optional[str] = None) -> str:
        """
        Reuse the processor customer for `email`, or create one.

        New customers carry `user_id` in their metadata for webhook
        correlation.

        Returns:
            Provider customer ID

        Raises:
            BillingProviderError: If lookup or creation fails
        """
        ...

    def create_subscription_checkout(
        self,
        *,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        subscription_metadata: Dict[str, str],
        coupon_id: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Create a recurring-mode checkout session.

        Raises:
            BillingProviderError: If session creation fails
        """
        ...

    def create_payment_checkout(
        self,
        *,
        customer_id: str,
        line_items: List[CheckoutLineItem],
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> CheckoutSession:
        """
        Create a one-time payment checkout session with inline prices.

        Raises:
            BillingProviderError: If session creation fails
        """
        ...

    def create_coupon(self, *, amount_off: int, currency: str, name: str) -> str:
        """
        Create a single-use (duration once) fixed-amount coupon.

        Returns:
            Provider coupon ID
        """
        ...

    def cancel_subscription(self, subscription_id: str, *, prorate: bool = True) -> None:
        """Cancel a subscription immediately at the processor."""
        ...

    def pause_subscription(self, subscription_id: str, *, resumes_at: datetime) -> None:
        """Pause collection (voiding invoices) until `resumes_at`."""
        ...

    def construct_event(self, headers: Dict[str, str], body: bytes) -> BillingEvent:
        """
        Verify webhook signature and parse event.

        Raises:
            BillingWebhookError: If signature invalid or parsing fails
        """
        ...


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""
    pass


class BillingWebhookError(BillingProviderError):
    """Exception for webhook processing errors."""
    pass
