"""
career_compass/models/plan.py

Plan tier definition.

Plans are static configuration: monthly analysis limits per analysis
category, save/retention permissions and list prices in JPY. A limit of
-1 means unlimited.
"""

from typing import Dict
from pydantic import BaseModel, ConfigDict

UNLIMITED = -1


class PlanDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan_id: str
    name: str
    analysis_limits: Dict[str, int]
    can_save_results: bool
    history_months: int
    goal_limit: int
    task_limit: int
    monthly_price: int
    yearly_price: int

    def limit_for(self, analysis_type: str) -> int:
        return self.analysis_limits.get(analysis_type, 0)

    @property
    def is_paid(self) -> bool:
        return self.plan_id != "free"
