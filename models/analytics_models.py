"""
DM Lab — Analytics Pydantic Models
====================================

Filter criteria, funnel totals, KPI results, experiment evaluations and
the request bodies used by the API routers.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models.dmlab_models import KpiStatus, Metric


# ─── Filtering ──────────────────────────────────────────────

class FilterCriteria(BaseModel):
    """
    Log selection criteria. Every field is optional; an omitted field (or the
    "all" sentinel used by dashboard selects) means no restriction.
    """
    model_config = ConfigDict(populate_by_name=True)

    account_id: Optional[str] = Field(None, alias="accountId")
    campaign_tag: Optional[str] = Field(None, alias="campaignTag")
    experiment_id: Optional[str] = Field(None, alias="experimentId")
    variant_id: Optional[str] = Field(None, alias="variantId")
    start: Optional[str] = Field(None, description="Inclusive ISO start date")
    end: Optional[str] = Field(None, description="Inclusive ISO end date")
    include_old_leads: bool = Field(False, alias="includeOldLeads")
    exclude_old_leads: bool = Field(False, alias="excludeOldLeads")
    only_old_leads: bool = Field(False, alias="onlyOldLeads")

    @model_validator(mode="before")
    @classmethod
    def _flatten_date_range(cls, data: Any) -> Any:
        """Accept {"dateRange": {"start", "end"}}; explicit start/end win."""
        if not isinstance(data, dict):
            return data
        date_range = data.get("dateRange", data.get("date_range"))
        if not isinstance(date_range, dict):
            return data
        data = {k: v for k, v in data.items() if k not in ("dateRange", "date_range")}
        for key in ("start", "end"):
            if data.get(key) is None and date_range.get(key) is not None:
                data[key] = date_range[key]
        return data


# ─── Totals ─────────────────────────────────────────────────

class Totals(BaseModel):
    """Summed funnel counts for a set of logs."""
    model_config = ConfigDict(frozen=True)

    connection_requests_sent: int = 0
    connections_accepted: int = 0
    permission_messages_sent: int = 0
    permission_seen: int = 0
    permission_positives: int = 0
    offer_messages_sent: int = 0
    offer_seen: int = 0
    offer_or_booking_intent_positives: int = 0
    booked_calls: int = 0
    attended_calls: int = 0
    closed_deals: int = 0

    def __add__(self, other: "Totals") -> "Totals":
        if not isinstance(other, Totals):
            return NotImplemented
        return Totals(**{
            name: getattr(self, name) + getattr(other, name)
            for name in Totals.model_fields
        })


# ─── KPI Results ────────────────────────────────────────────

class KpiResult(BaseModel):
    """
    Ratios on a 0-1 scale (None when the denominator is zero), their status
    against the 0-100 targets, and the bottleneck diagnosis.
    """
    primary: Dict[str, Optional[float]]
    secondary: Dict[str, Optional[float]]
    diagnostics: Dict[str, Optional[float]]
    status: Dict[str, KpiStatus]
    targets: Dict[str, float]
    bottleneck: str

    def value(self, metric: Metric | str) -> Optional[float]:
        key = Metric(metric).value
        for group in (self.primary, self.secondary, self.diagnostics):
            if key in group:
                return group[key]
        return None

    def all_values(self) -> Dict[str, Optional[float]]:
        return {**self.primary, **self.secondary, **self.diagnostics}


# ─── Experiments ────────────────────────────────────────────

class VariantStats(BaseModel):
    variant_id: str
    variant_name: str
    totals: Totals
    kpis: KpiResult
    metric_value: Optional[float] = None
    seen: int = 0
    required: int = 0
    is_valid: bool = False


class ExperimentEvaluation(BaseModel):
    experiment_id: str
    experiment_name: str
    primary_metric: Metric
    variant_stats: List[VariantStats] = Field(default_factory=list)
    winner: Optional[VariantStats] = None

    @property
    def insufficient_sample(self) -> bool:
        return self.winner is None


# ─── Reporting ──────────────────────────────────────────────

class GoalProgress(BaseModel):
    current: int
    goal: int
    percent: float


class AccountWeeklyProgress(BaseModel):
    account_id: str
    account_name: str
    week_start: str
    week_end: str
    connection_requests: GoalProgress
    permission_sent: GoalProgress
    booked_calls: GoalProgress


class Forecast(BaseModel):
    target_booked: int
    timeframe: str
    required_permission_sent: int
    required_connection_requests: int
    predicted_positive_replies: int
    predicted_offer_positives: int
    connection_requests_per_day: int
    permission_sent_per_day: int
    is_estimate: bool


# ─── API Request Bodies ─────────────────────────────────────

class TargetsUpdate(BaseModel):
    """Partial KPI target update; keys may be metric names or field names."""
    targets: Dict[str, Any]


class ConfigUpdate(BaseModel):
    autosave: Optional[bool] = None
    exclude_old_leads_from_kpi: Optional[bool] = None


class AccountCreate(BaseModel):
    name: str = Field(..., min_length=1)
    id: Optional[str] = None
    weekly_goals: Optional[Dict[str, Any]] = None


class AccountUpdate(BaseModel):
    name: Optional[str] = None
    weekly_goals: Optional[Dict[str, Any]] = None


class AccountRename(BaseModel):
    new_id: str = Field(..., min_length=1)


class VariantCreate(BaseModel):
    name: Optional[str] = None
    message: str = ""
    step_type: str = ""
