"""
DM Lab — Constants
====================

Schema version, storage file names, default targets and accounts, the
stage/metric derivation tables, KPI definitions and bottleneck labels.
"""
from __future__ import annotations

from models.dmlab_models import ExperimentStage, FunnelStage, Metric

SCHEMA_VERSION = 5

STATE_FILENAME = "dm_lab_state_v5.json"
LEGACY_STATE_FILENAMES = (
    "dm_experiment_dashboard_v4.json",
    "dm_experiment_dashboard_v3.json",
    "dm_experiment_dashboard_v2.json",
)

FUNNEL_STAGES = [stage for stage in FunnelStage]

FUNNEL_STAGE_LABELS = {
    FunnelStage.REQUESTED: "Requested",
    FunnelStage.CONNECTED: "Connected",
    FunnelStage.PERMISSION_SENT: "Permission Sent",
    FunnelStage.PERMISSION_POSITIVE: "Permission Positive",
    FunnelStage.OFFER_POSITIVE: "Offer Positive / Booking Intent",
    FunnelStage.BOOKED: "Booked",
    FunnelStage.ATTENDED: "Attended",
    FunnelStage.CLOSED: "Closed",
    FunnelStage.LOST: "Lost",
}

# Legacy single-letter codes and short enums from earlier lead trackers
LEGACY_LEAD_STAGES = {
    "A": FunnelStage.PERMISSION_SENT,
    "S": FunnelStage.PERMISSION_SENT,
    "B": FunnelStage.PERMISSION_POSITIVE,
    "PERMISSION_POS": FunnelStage.PERMISSION_POSITIVE,
    "C": FunnelStage.OFFER_POSITIVE,
    "OFFER_POS": FunnelStage.OFFER_POSITIVE,
    "D": FunnelStage.BOOKED,
    "X": FunnelStage.LOST,
}

PRIMARY_METRIC_BY_STAGE = {
    ExperimentStage.CONNECTION: Metric.CR,
    ExperimentStage.PERMISSION: Metric.PRR,
    ExperimentStage.OFFER: Metric.ABR,
    ExperimentStage.BOOKING: Metric.BOOKED_KPI,
}

REQUIRED_SEEN_BY_STAGE = {
    ExperimentStage.CONNECTION: 0,
    ExperimentStage.PERMISSION: 60,
    ExperimentStage.OFFER: 30,
    ExperimentStage.BOOKING: 0,
}

# Older experiment records carried a message type instead of a stage
STAGE_BY_EXPERIMENT_TYPE = {
    "PERMISSION_MESSAGE": ExperimentStage.PERMISSION,
    "OFFER_MESSAGE": ExperimentStage.OFFER,
    "OLD_LEADS_REOFFER": ExperimentStage.OFFER,
}

EXPERIMENT_METRICS = (Metric.CR, Metric.PRR, Metric.ABR, Metric.BOOKED_KPI)

VARIANT_STEP_TYPES = ("permission", "offer", "booking", "follow_up")

DEFAULT_TARGETS = {
    "cr": 30.0,
    "prr": 8.0,
    "abr": 4.0,
    "booked_kpi": 3.0,
    "positive_to_abr": 50.0,
    "abr_to_booked": 66.0,
    "seen_rate": 0.0,
    "show_up_rate": 0.0,
    "sales_close_rate": 0.0,
}

DEFAULT_ACCOUNTS = (
    {"id": "account_1", "name": "Account 1"},
    {"id": "account_2", "name": "Account 2"},
)

WARN_RATIO = 0.9

BOTTLENECK_NONE = "None (scale volume)"
BOTTLENECK_BOOKING = "Booking stage"
BOTTLENECK_OFFER = "Offer stage"
BOTTLENECK_PERMISSION = "Permission stage"
BOTTLENECK_TARGETING = "Targeting/Profile resonance"

KPI_DEFINITIONS = {
    Metric.CR: "Connection Rate = connections accepted / connection requests sent.",
    Metric.PRR: "Positive Reply Rate = permission positives / permission messages sent.",
    Metric.ABR: "Appointment Booking Rate = offer or booking intent positives / permission messages sent.",
    Metric.BOOKED_KPI: "Booked KPI = booked calls / permission messages sent.",
    Metric.POSITIVE_TO_ABR: "Positive to ABR = offer or booking positives / permission positives.",
    Metric.ABR_TO_BOOKED: "ABR to Booked = booked calls / offer or booking positives.",
    Metric.SEEN_RATE: "Seen rate = permission seen / permission messages sent.",
    Metric.SHOW_UP_RATE: "Show-up rate = attended calls / booked calls.",
    Metric.SCR: "Sales Close Rate (SCR) = closed deals / attended calls.",
}

COUNT_FIELDS = (
    "connection_requests_sent",
    "connections_accepted",
    "permission_messages_sent",
    "permission_seen",
    "permission_positives",
    "offer_messages_sent",
    "offer_seen",
    "offer_or_booking_intent_positives",
    "booked_calls",
    "attended_calls",
    "closed_deals",
)
