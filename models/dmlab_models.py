"""
DM Lab — Canonical Pydantic Models
====================================

Strict record types for the current (v5) schema generation: accounts,
daily logs, experiments and variants, prospects, configuration and the
root AppState aggregate, plus the persisted envelope.

Raw, legacy-shaped records never reach these models directly; they pass
through scripts.dmlab.schema_normalizer first.
"""
from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ─── Enumerations ───────────────────────────────────────────

class FunnelStage(str, Enum):
    """Prospect stages for the CRM board, in funnel order."""
    REQUESTED = "REQUESTED"
    CONNECTED = "CONNECTED"
    PERMISSION_SENT = "PERMISSION_SENT"
    PERMISSION_POSITIVE = "PERMISSION_POSITIVE"
    OFFER_POSITIVE = "OFFER_POSITIVE"
    BOOKED = "BOOKED"
    ATTENDED = "ATTENDED"
    CLOSED = "CLOSED"
    LOST = "LOST"


class ExperimentStage(str, Enum):
    CONNECTION = "CONNECTION"
    PERMISSION = "PERMISSION"
    OFFER = "OFFER"
    BOOKING = "BOOKING"


class ExperimentStatus(str, Enum):
    ACTIVE = "active"
    PLANNED = "planned"
    PAUSED = "paused"
    RUNNING = "running"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class Metric(str, Enum):
    """Ratio metrics produced by the KPI calculator."""
    CR = "CR"
    PRR = "PRR"
    ABR = "ABR"
    BOOKED_KPI = "BOOKED_KPI"
    POSITIVE_TO_ABR = "POSITIVE_TO_ABR"
    ABR_TO_BOOKED = "ABR_TO_BOOKED"
    SEEN_RATE = "SEEN_RATE"
    SHOW_UP_RATE = "SHOW_UP_RATE"
    SCR = "SCR"


class KpiStatus(str, Enum):
    GOOD = "good"
    WARN = "warn"
    BAD = "bad"
    NEUTRAL = "neutral"


class _Record(BaseModel):
    model_config = ConfigDict(use_enum_values=False, validate_assignment=True)


# ─── Accounts & Config ──────────────────────────────────────

class WeeklyGoals(_Record):
    """Weekly activity goals for one LinkedIn account."""
    connection_requests: int = Field(0, ge=0)
    permission_sent: int = Field(0, ge=0)
    booked_calls: int = Field(0, ge=0)


class Account(_Record):
    id: str
    name: str
    weekly_goals: WeeklyGoals = Field(default_factory=WeeklyGoals)


class KpiTargets(_Record):
    """Target percentages on a 0-100 scale, one per metric."""
    cr: float = Field(30.0, ge=0)
    prr: float = Field(8.0, ge=0)
    abr: float = Field(4.0, ge=0)
    booked_kpi: float = Field(3.0, ge=0)
    positive_to_abr: float = Field(50.0, ge=0)
    abr_to_booked: float = Field(66.0, ge=0)
    seen_rate: float = Field(0.0, ge=0)
    show_up_rate: float = Field(0.0, ge=0)
    sales_close_rate: float = Field(0.0, ge=0)

    def for_metric(self, metric: Metric | str) -> float:
        """Return the target for a metric (SCR reads sales_close_rate)."""
        metric = Metric(metric)
        if metric is Metric.SCR:
            return self.sales_close_rate
        return getattr(self, metric.value.lower())


class DMLabConfig(_Record):
    autosave: bool = False
    exclude_old_leads_from_kpi: bool = True
    kpi_targets: KpiTargets = Field(default_factory=KpiTargets)
    accounts: List[Account] = Field(default_factory=list)


# ─── Daily Logs ─────────────────────────────────────────────

class DailyLog(_Record):
    """One day of funnel activity for an account/campaign/experiment."""
    id: str
    date: str = Field(description="ISO 8601 calendar date (YYYY-MM-DD)")
    account_id: str = ""
    campaign_tag: str = ""
    is_old_leads_lane: bool = False
    experiment_id: str = ""
    variant_id: str = ""
    notes: str = ""

    connection_requests_sent: int = Field(0, ge=0)
    connections_accepted: int = Field(0, ge=0)
    permission_messages_sent: int = Field(0, ge=0)
    permission_seen: int = Field(0, ge=0)
    permission_positives: int = Field(0, ge=0)
    offer_messages_sent: int = Field(0, ge=0)
    offer_seen: int = Field(0, ge=0)
    offer_or_booking_intent_positives: int = Field(0, ge=0)
    booked_calls: int = Field(0, ge=0)
    attended_calls: int = Field(0, ge=0)
    closed_deals: int = Field(0, ge=0)


# ─── Experiments ────────────────────────────────────────────

class Variant(_Record):
    id: str
    name: str
    message: str = ""
    step_type: str = ""


class Experiment(_Record):
    id: str
    name: str
    status: ExperimentStatus = ExperimentStatus.ACTIVE
    hypothesis: str = ""
    notes: str = ""
    created_at: str = ""
    funnel_stage_targeted: ExperimentStage = ExperimentStage.PERMISSION
    primary_metric: Metric = Metric.PRR
    required_sample_size_seen: int = Field(60, ge=0)
    variants: List[Variant] = Field(default_factory=list)

    def get_variant(self, variant_id: str) -> Optional[Variant]:
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None


# ─── Prospects ──────────────────────────────────────────────

class Prospect(_Record):
    """CRM board card. Independent of the KPI math."""
    id: str
    name: str
    linkedin_url: str = ""
    account_id: str = ""
    stage: FunnelStage = FunnelStage.REQUESTED
    is_old_leads_lane: bool = False
    notes: str = ""


# ─── Root Aggregate ─────────────────────────────────────────

class UiState(_Record):
    is_dark: bool = True


class AppState(_Record):
    config: DMLabConfig = Field(default_factory=DMLabConfig)
    logs: List[DailyLog] = Field(default_factory=list)
    experiments: List[Experiment] = Field(default_factory=list)
    prospects: List[Prospect] = Field(default_factory=list)
    ui: UiState = Field(default_factory=UiState)

    def get_log(self, log_id: str) -> Optional[DailyLog]:
        return next((log for log in self.logs if log.id == log_id), None)

    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        return next((e for e in self.experiments if e.id == experiment_id), None)

    def get_prospect(self, prospect_id: str) -> Optional[Prospect]:
        return next((p for p in self.prospects if p.id == prospect_id), None)

    def get_account(self, account_id: str) -> Optional[Account]:
        return next((a for a in self.config.accounts if a.id == account_id), None)


class PersistedState(BaseModel):
    """On-disk / over-the-wire envelope: {schemaVersion, savedAt, data}."""
    model_config = ConfigDict(populate_by_name=True)

    schema_version: int = Field(..., alias="schemaVersion")
    saved_at: Optional[str] = Field(None, alias="savedAt")
    data: AppState
