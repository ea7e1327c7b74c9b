"""
Static plan, ticket and referral catalog.

Loaded once at import time and validated by `validate_catalog`; price ids
for paid plans come from configuration (see Settings.price_catalog).
"""
from typing import Dict, Optional

from career_compass.core.config import PAID_PLAN_IDS, Settings, settings
from career_compass.models.plan import PlanDefinition, UNLIMITED
from career_compass.models.ticket import TicketProduct

CATALOG_VERSION = "2024-06"

ANALYSIS_TYPES = ("clarity", "strengths", "career", "values", "persona")
NORMAL_ANALYSIS_TYPES = ("clarity", "strengths", "career", "values")

DEFAULT_PLAN_ID = "free"

PLANS: Dict[str, PlanDefinition] = {
    "free": PlanDefinition(
        plan_id="free",
        name="フリー",
        analysis_limits={"clarity": 1, "strengths": 1, "career": 1, "values": 1, "persona": 0},
        can_save_results=False,
        history_months=0,
        goal_limit=1,
        task_limit=5,
        monthly_price=0,
        yearly_price=0,
    ),
    "standard": PlanDefinition(
        plan_id="standard",
        name="スタンダード",
        analysis_limits={"clarity": 15, "strengths": 15, "career": 15, "values": 15, "persona": 2},
        can_save_results=True,
        history_months=3,
        goal_limit=UNLIMITED,
        task_limit=UNLIMITED,
        monthly_price=1480,
        yearly_price=14208,
    ),
    "premium": PlanDefinition(
        plan_id="premium",
        name="プレミアム",
        analysis_limits={t: UNLIMITED for t in ANALYSIS_TYPES},
        can_save_results=True,
        history_months=UNLIMITED,
        goal_limit=UNLIMITED,
        task_limit=UNLIMITED,
        monthly_price=2980,
        yearly_price=28608,
    ),
}

TICKET_PRODUCTS: Dict[str, TicketProduct] = {
    "analysis_normal": TicketProduct(
        ticket_type="analysis_normal",
        name="通常分析チケット",
        description="明確化・強み・キャリア・価値観の分析を1回実行できます",
        price=200,
        analysis_types=NORMAL_ANALYSIS_TYPES,
    ),
    "analysis_persona": TicketProduct(
        ticket_type="analysis_persona",
        name="ペルソナ分析チケット",
        description="ペルソナ分析を1回実行できます",
        price=500,
        analysis_types=("persona",),
    ),
}

TICKET_VALIDITY_MONTHS = 1
MAX_TICKETS_PER_PURCHASE = 10
EXPIRES_SOON_DAYS = 7

REFERRAL_REWARDS = {
    "referrer": {"ticket_type": "analysis_normal", "quantity": 3},
    "referee": {"ticket_type": "analysis_normal", "quantity": 5},
}
REFERRAL_CODE_LENGTH = 12
REFERRAL_CODE_TTL_DAYS = 7


def get_plan(plan_id: Optional[str]) -> PlanDefinition:
    """Unknown or missing plan ids resolve to the free tier."""
    return PLANS.get(plan_id or DEFAULT_PLAN_ID, PLANS[DEFAULT_PLAN_ID])


def ticket_type_for_analysis(analysis_type: str) -> Optional[str]:
    for product in TICKET_PRODUCTS.values():
        if analysis_type in product.analysis_types:
            return product.ticket_type
    return None


def resolve_price_id(plan_id: str, billing_cycle: str, settings_obj: Optional[Settings] = None) -> Optional[str]:
    """Map `(plan_id, billing_cycle)` to the processor price id, or None."""
    cfg = settings_obj or settings
    return cfg.price_catalog().get(f"{plan_id}_{billing_cycle}")


def validate_catalog() -> None:
    """Static sanity checks on the literal tables above."""
    for plan in PLANS.values():
        missing = [t for t in ANALYSIS_TYPES if t not in plan.analysis_limits]
        if missing:
            raise RuntimeError(f"plan {plan.plan_id} has no limit for: {', '.join(missing)}")
    for plan_id in PAID_PLAN_IDS:
        if plan_id not in PLANS:
            raise RuntimeError(f"paid plan {plan_id} missing from catalog")
    covered = [t for p in TICKET_PRODUCTS.values() for t in p.analysis_types]
    if sorted(covered) != sorted(ANALYSIS_TYPES):
        raise RuntimeError("ticket products must cover every analysis type exactly once")
    for role in ("referrer", "referee"):
        if REFERRAL_REWARDS[role]["ticket_type"] not in TICKET_PRODUCTS:
            raise RuntimeError(f"referral reward for {role} references an unknown ticket type")


validate_catalog()
