"""
career_compass/models/entitlement.py

Eligibility decisions returned by the entitlement ledger.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict


class UsageInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    used: int
    limit: int


class AnalysisEligibility(BaseModel):
    """
    Read-only answer to "may this user run this analysis now?".

    `via` is "plan" when the monthly allowance covers the run and "ticket"
    when the caller must consume a ticket before proceeding.
    """
    model_config = ConfigDict(frozen=True)

    can_analyze: bool
    plan_id: str
    reason: Optional[str] = None
    via: Optional[str] = None
    usage_info: Optional[UsageInfo] = None
    ticket_price: Optional[int] = None


class SaveEligibility(BaseModel):
    model_config = ConfigDict(frozen=True)

    can_save: bool
    plan_id: str
    history_months: int


class UsageStatusItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    analysis_type: str
    used: int
    limit: int
    can_use: bool
