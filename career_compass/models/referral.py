"""
career_compass/models/referral.py

Referral code and program models.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class ReferralCode(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    referrer_id: str
    referral_code: str
    status: str  # pending | completed | expired
    expires_at: datetime
    created_at: datetime
    referee_id: Optional[str] = None
    reward_type: str = "analysis_normal"
    reward_value: int = 0
    completed_at: Optional[datetime] = None


class ReferralValidation(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    reason: Optional[str] = None
    referrer_id: Optional[str] = None


class ReferralStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_referrals: int
    successful_referrals: int
    pending_referrals: int
    total_rewards_earned: int
    current_month_referrals: int
