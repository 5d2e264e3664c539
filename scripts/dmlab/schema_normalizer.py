"""
DM Lab — Schema Normalizer
============================

Turns raw persisted state from any schema generation into a canonical
AppState. Never raises: every missing or malformed field gets a typed default.

Generations:
  v1   Legacy tracker. Flat logs under "daily"/"dailyLogs"/"logs" with short
       counters (sent, accepted, booked, calendly...), string account names.
  v2-4 Context generation. camelCase "dailyLogs", "leads", "kpiTargets",
       "settings.accounts" (strings in v2, objects from v3), experiment stage
       derived from "experimentType" (v4).
  v5   Current workspace shape: {config, logs, experiments, prospects, ui}
       with snake_case records.

Pipeline:
  unwrap_envelope()        - Split {schemaVersion, savedAt, data}
  detect_schema_version()  - Signature-field detection
  migrate()                - Ordered pure migration steps up to v5
  normalize_state()        - Structural normalization into pydantic models

Record helpers (usable on their own, e.g. for a single incoming log):
  normalize_log(), normalize_experiment(), normalize_prospect(),
  normalize_config(), normalize_kpi_targets(), normalize_lead_stage()
"""
from __future__ import annotations

import math
import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from models.dmlab_models import (
    Account,
    AppState,
    DailyLog,
    DMLabConfig,
    Experiment,
    ExperimentStage,
    ExperimentStatus,
    FunnelStage,
    KpiTargets,
    Metric,
    PersistedState,
    Prospect,
    UiState,
    Variant,
    WeeklyGoals,
)
from scripts.dmlab.constants import (
    COUNT_FIELDS,
    DEFAULT_ACCOUNTS,
    EXPERIMENT_METRICS,
    LEGACY_LEAD_STAGES,
    PRIMARY_METRIC_BY_STAGE,
    REQUIRED_SEEN_BY_STAGE,
    SCHEMA_VERSION,
    STAGE_BY_EXPERIMENT_TYPE,
)
from scripts.lib.logger import setup_logger

logger = setup_logger("schema_normalizer")


# ─── Field Alias Chains ─────────────────────────────────────
# snake_case (v5) → camelCase (v2-4) → legacy (v1). First non-None wins.

LOG_COUNT_ALIASES: Dict[str, Tuple[str, ...]] = {
    "connection_requests_sent": ("connection_requests_sent", "connectionRequestsSent"),
    "connections_accepted": ("connections_accepted", "connectionsAccepted", "accepted"),
    "permission_messages_sent": ("permission_messages_sent", "permissionMessagesSent", "sent", "initiated"),
    "permission_seen": ("permission_seen", "permissionSeen", "seen", "mediaSeen"),
    "permission_positives": (
        "permission_positives", "permissionPositives", "positive", "positiveReplies", "engaged",
    ),
    "offer_messages_sent": ("offer_messages_sent", "offerMessagesSent"),
    "offer_seen": ("offer_seen", "offerSeen"),
    "offer_or_booking_intent_positives": (
        "offer_or_booking_intent_positives", "offerOrBookingIntentPositives", "offerPositives",
    ),
    "booked_calls": ("booked_calls", "bookedCalls", "booked"),
    "attended_calls": ("attended_calls", "attendedCalls", "attended"),
    "closed_deals": ("closed_deals", "closedDeals", "closed"),
}

CALENDLY_ALIASES = ("calendly", "calendlySent")

LOG_TEXT_ALIASES: Dict[str, Tuple[str, ...]] = {
    "account_id": ("account_id", "accountId", "account"),
    "campaign_tag": ("campaign_tag", "campaignTag", "campaign", "tag"),
    "experiment_id": ("experiment_id", "experimentId"),
    "variant_id": ("variant_id", "variantId"),
}

OLD_LANE_ALIASES = ("is_old_leads_lane", "isOldLeadsLane", "isOldLane")

TARGET_ALIASES: Dict[str, Tuple[str, ...]] = {
    "cr": ("cr", "CR"),
    "prr": ("prr", "PRR"),
    "abr": ("abr", "ABR"),
    "booked_kpi": ("booked_kpi", "BOOKED_KPI", "bookedKpi", "booked"),
    "positive_to_abr": ("positive_to_abr", "POSITIVE_TO_ABR", "positiveToAbr", "posToAbr"),
    "abr_to_booked": ("abr_to_booked", "ABR_TO_BOOKED", "abrToBooked"),
    "seen_rate": ("seen_rate", "SEEN_RATE", "seenRate"),
    "show_up_rate": ("show_up_rate", "SHOW_UP_RATE", "showUpRate", "srr"),
    "sales_close_rate": ("sales_close_rate", "SALES_CLOSE_RATE", "SCR", "salesCloseRate", "scr"),
}

GOAL_ALIASES: Dict[str, Tuple[str, ...]] = {
    "connection_requests": (
        "connection_requests", "connectionRequests", "connection_requests_sent", "weeklyConnectionRequests",
    ),
    "permission_sent": (
        "permission_sent", "permissionSent", "permission_messages_sent", "weeklyPermissionSent",
    ),
    "booked_calls": ("booked_calls", "bookedCalls", "weeklyBooked"),
}

LOG_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "date": ("date",),
    "notes": ("notes",),
    "is_old_leads_lane": OLD_LANE_ALIASES,
    **LOG_TEXT_ALIASES,
    **LOG_COUNT_ALIASES,
}

EXPERIMENT_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "name": ("name",),
    "status": ("status",),
    "hypothesis": ("hypothesis",),
    "notes": ("notes",),
    "funnel_stage_targeted": ("funnel_stage_targeted", "funnelStageTargeted", "stage"),
    "primary_metric": ("primary_metric", "primaryMetric"),
    "required_sample_size_seen": ("required_sample_size_seen", "requiredSampleSizeSeen"),
}

VARIANT_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "name": ("name", "label"),
    "message": ("message", "messageText"),
    "step_type": ("step_type", "stepType", "step"),
}

PROSPECT_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "name": ("name",),
    "linkedin_url": ("linkedin_url", "linkedinUrl", "profileLink"),
    "account_id": ("account_id", "accountId"),
    "stage": ("stage",),
    "is_old_leads_lane": OLD_LANE_ALIASES,
    "notes": ("notes",),
}

_V5_LOG_KEYS = frozenset(COUNT_FIELDS)
_CONTEXT_LOG_KEYS = frozenset(chain[1] for chain in LOG_COUNT_ALIASES.values())
_LEGACY_LOG_KEYS = frozenset(
    [key for chain in LOG_COUNT_ALIASES.values() for key in chain[2:]] + list(CALENDLY_ALIASES)
)
_CONTEXT_STATE_KEYS = ("dailyLogs", "leads", "kpiTargets", "settings", "goals", "offers")


# ─── Coercion Helpers ───────────────────────────────────────

def _to_number(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return 0.0
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return 0.0
    else:
        return 0.0
    return number if math.isfinite(number) else 0.0


def clamp_non_neg_int(value: Any) -> int:
    """Floor to an integer and clamp at 0. Non-numeric or non-finite input → 0."""
    if isinstance(value, int) and not isinstance(value, bool):
        return max(0, value)
    return max(0, math.floor(_to_number(value)))


def clamp_non_neg_number(value: Any) -> float:
    """Clamp at 0 keeping fractions. Non-numeric or non-finite input → 0.0."""
    return max(0.0, _to_number(value))


def _first(record: Mapping, keys: Sequence[str]) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def canonicalize_keys(record: Mapping, aliases: Mapping[str, Sequence[str]]) -> Dict[str, Any]:
    """Pick {field: value} for every field whose alias chain has a non-None value."""
    record = _as_mapping(record)
    picked = {}
    for field, chain in aliases.items():
        value = _first(record, chain)
        if value is not None:
            picked[field] = value
    return picked


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, Enum):
        value = value.value
    return str(value).strip()


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _as_mapping(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _first_list(record: Mapping, keys: Sequence[str]) -> List[Any]:
    for key in keys:
        if isinstance(record.get(key), (list, tuple)):
            return list(record[key])
    return []


def _iso_date(value: Any) -> str:
    """Calendar date as YYYY-MM-DD. Datetimes are truncated, garbage becomes today."""
    text = _text(value)[:10]
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        return date.today().isoformat()


def generate_id() -> str:
    return str(uuid.uuid4())


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ─── Stage / Metric Derivation ──────────────────────────────

def coerce_experiment_stage(value: Any, experiment_type: Any = None) -> ExperimentStage:
    """Stage from an explicit value, else from the legacy experimentType, else PERMISSION."""
    text = _text(value).upper()
    if text in ExperimentStage.__members__:
        return ExperimentStage(text)
    return STAGE_BY_EXPERIMENT_TYPE.get(_text(experiment_type).upper(), ExperimentStage.PERMISSION)


def primary_metric_for_stage(stage: ExperimentStage | str) -> Metric:
    return PRIMARY_METRIC_BY_STAGE.get(coerce_experiment_stage(stage), Metric.PRR)


def required_seen_for_stage(stage: ExperimentStage | str) -> int:
    return REQUIRED_SEEN_BY_STAGE.get(coerce_experiment_stage(stage), 0)


def coerce_primary_metric(value: Any, stage: ExperimentStage) -> Metric:
    text = _text(value).upper()
    if text in {metric.value for metric in EXPERIMENT_METRICS}:
        return Metric(text)
    return primary_metric_for_stage(stage)


def normalize_lead_stage(value: Any) -> FunnelStage:
    """
    Map any historical prospect stage onto the 9-stage funnel.

    Legacy single-letter codes and short enums are remapped; anything
    unrecognized falls back to REQUESTED.
    """
    text = _text(value).upper()
    if text in FunnelStage.__members__:
        return FunnelStage(text)
    return LEGACY_LEAD_STAGES.get(text, FunnelStage.REQUESTED)


# ─── Schema Detection ───────────────────────────────────────

def unwrap_envelope(raw: Any) -> Tuple[Dict[str, Any], Optional[int], Optional[str]]:
    """
    Split a persisted envelope into (body, declared_version, saved_at).
    Bare state dicts are returned as-is with the version they declare, if any.
    """
    if isinstance(raw, PersistedState):
        return raw.data.model_dump(mode="json"), raw.schema_version, raw.saved_at
    if isinstance(raw, AppState):
        return raw.model_dump(mode="json"), SCHEMA_VERSION, None
    record = _as_mapping(raw)
    declared = record.get("schemaVersion", record.get("schema_version"))
    declared = declared if isinstance(declared, int) and not isinstance(declared, bool) else None
    if isinstance(record.get("data"), Mapping) and (declared is not None or "savedAt" in record):
        saved_at = record.get("savedAt", record.get("saved_at"))
        return dict(record["data"]), declared, saved_at if isinstance(saved_at, str) else None
    return record, declared, None


def _log_records(state: Mapping) -> List[Mapping]:
    return [log for log in _first_list(state, ("logs", "dailyLogs", "daily")) if isinstance(log, Mapping)]


def detect_schema_version(state: Mapping, declared: Optional[int] = None) -> int:
    """
    Detect the generation of a bare state dict from its signature fields.

    Log record keys decide first (booked_calls vs. bookedCalls vs. legacy
    sent/booked), then container keys, then the declared version. camelCase
    records inside a workspace container (e.g. rows pulled from the cloud)
    are current: the record normalizers read every alias.
    """
    keys = set()
    for log in _log_records(state):
        keys.update(log.keys())

    if keys & _V5_LOG_KEYS:
        return SCHEMA_VERSION
    if keys & _CONTEXT_LOG_KEYS and "daily" not in state:
        return SCHEMA_VERSION if _is_workspace(state) else _context_version(declared)
    if keys & _LEGACY_LOG_KEYS or "daily" in state:
        return 1

    if _is_workspace(state):
        return SCHEMA_VERSION
    if any(key in state for key in _CONTEXT_STATE_KEYS):
        return _context_version(declared)
    if declared is not None and 1 <= declared <= SCHEMA_VERSION:
        return declared
    return SCHEMA_VERSION


def _is_workspace(state: Mapping) -> bool:
    if "dailyLogs" in state or "leads" in state:
        return False
    return "config" in state or "prospects" in state or "ui" in state


def _context_version(declared: Optional[int]) -> int:
    if declared is not None and 2 <= declared < SCHEMA_VERSION:
        return declared
    # Context-shaped data stamped with a newer version is the last context generation
    return SCHEMA_VERSION - 1 if declared is not None and declared >= SCHEMA_VERSION else 2


# ─── Migration Steps ────────────────────────────────────────

def _calendly_positives(record: Mapping) -> int:
    calendly = clamp_non_neg_int(_first(record, CALENDLY_ALIASES))
    return calendly if calendly > 0 else 0


def _legacy_log_to_context(log: Mapping) -> Dict[str, Any]:
    migrated = dict(log)
    for chain in LOG_COUNT_ALIASES.values():
        camel, legacy = chain[1], chain[2:]
        if migrated.get(camel) is None:
            value = _first(log, legacy)
            if value is not None:
                migrated[camel] = value
    if migrated.get("offerOrBookingIntentPositives") is None and migrated.get("offerPositives") is None:
        migrated["offerOrBookingIntentPositives"] = _calendly_positives(log)
    if migrated.get("isOldLeadsLane") is None:
        migrated["isOldLeadsLane"] = _as_bool(log.get("isOldLane")) or log.get("lane") == "old"
    for key in _LEGACY_LOG_KEYS:
        migrated.pop(key, None)
    return migrated


def _migrate_v1_to_v2(state: Dict[str, Any]) -> Dict[str, Any]:
    """Legacy tracker → context: camelCase counters under dailyLogs, settings block."""
    legacy_config = _as_mapping(state.get("config"))
    settings = _as_mapping(state.get("settings"))
    settings.setdefault("accounts", _first(legacy_config, ("accounts",)) or state.get("accounts"))
    exclude = _first(settings, ("excludeOldLeadsFromKpi",))
    if exclude is None:
        exclude = _first(legacy_config, ("excludeOldLeadsFromKpi",))
    if exclude is None:
        exclude = state.get("excludeOldLeadsFromKpi")
    settings["excludeOldLeadsFromKpi"] = exclude
    if "theme" not in settings:
        is_dark = _first(_as_mapping(state.get("ui")), ("isDark",))
        is_dark = state.get("isDark") if is_dark is None else is_dark
        settings["theme"] = "light" if is_dark is False else "dark"

    autosave = _first(legacy_config, ("autosave",))
    return {
        "schemaVersion": 2,
        "dailyLogs": [_legacy_log_to_context(log) for log in _log_records(state)],
        "leads": _first_list(state, ("leads", "prospects")),
        "experiments": _as_list(state.get("experiments")),
        "offers": _as_list(state.get("offers")),
        "goals": state.get("goals"),
        "kpiTargets": state.get("kpiTargets") or legacy_config.get("kpiTargets"),
        "settings": settings,
        "autosave": state.get("autosave") if autosave is None else autosave,
    }


def _with_context_containers(state: Mapping) -> Dict[str, Any]:
    """Move logs and leads under the context container keys, whichever key held them."""
    state = dict(state)
    state["dailyLogs"] = [dict(log) for log in _log_records(state)]
    state["leads"] = _first_list(state, ("leads", "prospects"))
    for key in ("logs", "daily", "prospects"):
        state.pop(key, None)
    return state


def _account_name_map(accounts: Sequence[Mapping]) -> Dict[str, str]:
    return {
        _text(account.get("name")): _text(account.get("id"))
        for account in accounts
        if _text(account.get("name")) and _text(account.get("id"))
    }


def _migrate_v2_to_v3(state: Dict[str, Any]) -> Dict[str, Any]:
    """String account names become account objects; references move from names to ids."""
    state = _with_context_containers(state)
    settings = _as_mapping(state.get("settings"))
    goals = _as_mapping(state.get("goals"))
    raw_accounts = _as_list(settings.get("accounts"))

    accounts = []
    for index, account in enumerate(raw_accounts):
        if isinstance(account, str):
            accounts.append({"id": f"account_{index + 1}", "name": account.strip(), "weeklyGoals": dict(goals)})
        elif isinstance(account, Mapping):
            accounts.append(dict(account))
    settings["accounts"] = accounts
    state["settings"] = settings

    by_name = _account_name_map(accounts)
    for key in ("dailyLogs", "leads"):
        records = []
        for record in _as_list(state.get(key)):
            if isinstance(record, Mapping):
                record = dict(record)
                name = _text(record.get("accountId"))
                if name in by_name:
                    record["accountId"] = by_name[name]
                records.append(record)
        state[key] = records
    state["schemaVersion"] = 3
    return state


def _migrate_v3_to_v4(state: Dict[str, Any]) -> Dict[str, Any]:
    """Experiments gain an explicit stage/metric/sample size; lead stages join the 9-stage funnel."""
    state = _with_context_containers(state)
    experiments = []
    for experiment in _as_list(state.get("experiments")):
        if not isinstance(experiment, Mapping):
            continue
        experiment = dict(experiment)
        stage = coerce_experiment_stage(
            _first(experiment, ("funnelStageTargeted", "stage")), experiment.get("experimentType"),
        )
        experiment["funnelStageTargeted"] = stage.value
        if experiment.get("primaryMetric") is None:
            experiment["primaryMetric"] = primary_metric_for_stage(stage).value
        if experiment.get("requiredSampleSizeSeen") is None:
            experiment["requiredSampleSizeSeen"] = required_seen_for_stage(stage)
        experiment["variants"] = [
            {**variant, "name": _first(variant, ("name", "label")), "stepType": _first(variant, ("stepType", "step"))}
            for variant in _as_list(experiment.get("variants"))
            if isinstance(variant, Mapping)
        ]
        experiments.append(experiment)
    state["experiments"] = experiments

    leads = []
    for lead in _as_list(state.get("leads")):
        if isinstance(lead, Mapping):
            lead = dict(lead)
            lead["stage"] = normalize_lead_stage(lead.get("stage")).value
            lead["isOldLeadsLane"] = _as_bool(_first(lead, ("isOldLeadsLane", "isOldLane")))
            leads.append(lead)
    state["leads"] = leads
    state["schemaVersion"] = 4
    return state


def _camel_log_to_snake(log: Mapping) -> Dict[str, Any]:
    migrated = {
        "id": log.get("id"),
        "date": log.get("date"),
        "notes": log.get("notes"),
        "is_old_leads_lane": _first(log, OLD_LANE_ALIASES),
    }
    for snake, chain in LOG_TEXT_ALIASES.items():
        migrated[snake] = _first(log, chain)
    for snake, chain in LOG_COUNT_ALIASES.items():
        migrated[snake] = _first(log, chain)
    if migrated["offer_or_booking_intent_positives"] is None:
        migrated["offer_or_booking_intent_positives"] = _calendly_positives(log)
    return migrated


def _migrate_v4_to_v5(state: Dict[str, Any]) -> Dict[str, Any]:
    """Context → workspace: a single config block and snake_case records."""
    state = _with_context_containers(state)
    settings = _as_mapping(state.get("settings"))
    offers = _as_list(state.get("offers"))
    if offers:
        logger.info("Dropping %d legacy offer records during migration", len(offers))

    experiments = []
    for experiment in _as_list(state.get("experiments")):
        if isinstance(experiment, Mapping):
            experiments.append({
                "id": experiment.get("id"),
                "name": experiment.get("name"),
                "status": experiment.get("status"),
                "hypothesis": experiment.get("hypothesis"),
                "notes": experiment.get("notes"),
                "created_at": _first(experiment, ("createdAt", "startedAt")),
                "funnel_stage_targeted": _first(experiment, ("funnelStageTargeted", "stage")),
                "experiment_type": experiment.get("experimentType"),
                "primary_metric": experiment.get("primaryMetric"),
                "required_sample_size_seen": experiment.get("requiredSampleSizeSeen"),
                "variants": [
                    {
                        "id": variant.get("id"),
                        "name": _first(variant, ("name", "label")),
                        "message": _first(variant, ("message", "messageText")),
                        "step_type": _first(variant, ("stepType", "step")),
                    }
                    for variant in _as_list(experiment.get("variants"))
                    if isinstance(variant, Mapping)
                ],
                "messageText": experiment.get("messageText"),
                "messageLabel": experiment.get("messageLabel"),
            })

    prospects = []
    for lead in _as_list(state.get("leads")):
        if isinstance(lead, Mapping):
            prospects.append({
                "id": lead.get("id"),
                "name": lead.get("name"),
                "linkedin_url": _first(lead, ("linkedinUrl", "profileLink")),
                "account_id": lead.get("accountId"),
                "stage": lead.get("stage"),
                "is_old_leads_lane": lead.get("isOldLeadsLane"),
                "notes": lead.get("notes"),
            })

    return {
        "config": {
            "autosave": state.get("autosave"),
            "exclude_old_leads_from_kpi": settings.get("excludeOldLeadsFromKpi"),
            "kpi_targets": _as_mapping(state.get("kpiTargets")),
            "accounts": _as_list(settings.get("accounts")),
        },
        "logs": [_camel_log_to_snake(log) for log in state["dailyLogs"]],
        "experiments": experiments,
        "prospects": prospects,
        "ui": {"is_dark": settings.get("theme") != "light"},
    }


class MigrationStep(NamedTuple):
    from_version: int
    description: str
    apply: Callable[[Dict[str, Any]], Dict[str, Any]]


MIGRATIONS: Tuple[MigrationStep, ...] = (
    MigrationStep(1, "legacy tracker → context", _migrate_v1_to_v2),
    MigrationStep(2, "account names → account objects", _migrate_v2_to_v3),
    MigrationStep(3, "experiment stages and lead funnel", _migrate_v3_to_v4),
    MigrationStep(4, "context → workspace", _migrate_v4_to_v5),
)


def migrate(state: Mapping, version: int) -> Dict[str, Any]:
    """Apply migration steps in order until the state reaches SCHEMA_VERSION."""
    migrated = dict(state)
    steps = {step.from_version: step for step in MIGRATIONS}
    while version < SCHEMA_VERSION:
        step = steps[version]
        logger.debug("Applying migration v%d: %s", step.from_version, step.description)
        migrated = step.apply(migrated)
        version += 1
    return migrated


# ─── Structural Normalization ───────────────────────────────

def normalize_weekly_goals(raw: Any, fallback: Optional[Mapping] = None) -> WeeklyGoals:
    goals = _as_mapping(raw)
    fallback = _as_mapping(fallback)
    values = {}
    for field, chain in GOAL_ALIASES.items():
        value = _first(goals, chain)
        values[field] = clamp_non_neg_int(_first(fallback, chain) if value is None else value)
    return WeeklyGoals(**values)


def normalize_accounts(raw: Any, fallback_goals: Optional[Mapping] = None) -> List[Account]:
    """Accounts from objects or bare names; an empty list yields the two default accounts."""
    raw_accounts = _as_list(raw) or [dict(account) for account in DEFAULT_ACCOUNTS]
    accounts = []
    for index, account in enumerate(raw_accounts):
        if isinstance(account, str):
            account = {"name": account}
        account = _as_mapping(account)
        goals = _first(account, ("weekly_goals", "weeklyGoals", "goals"))
        accounts.append(Account(
            id=_text(account.get("id")) or f"account_{index + 1}",
            name=_text(account.get("name")) or f"Account {index + 1}",
            weekly_goals=normalize_weekly_goals(goals, fallback_goals),
        ))
    return accounts


def normalize_kpi_targets(raw: Any, base: Optional[KpiTargets] = None) -> KpiTargets:
    """
    Merge a (possibly partial) target mapping over ``base`` (defaults when
    omitted). Accepts field names, metric names and legacy context keys.
    """
    values = (base or KpiTargets()).model_dump()
    targets = raw.model_dump(mode="json") if isinstance(raw, KpiTargets) else _as_mapping(raw)
    for field, chain in TARGET_ALIASES.items():
        value = _first(targets, chain)
        if value is not None:
            values[field] = clamp_non_neg_number(value)
    return KpiTargets(**values)


def normalize_config(raw: Any) -> DMLabConfig:
    config = raw.model_dump(mode="json") if isinstance(raw, DMLabConfig) else _as_mapping(raw)
    return DMLabConfig(
        autosave=_as_bool(config.get("autosave")),
        exclude_old_leads_from_kpi=_as_bool(
            _first(config, ("exclude_old_leads_from_kpi", "excludeOldLeadsFromKpi")), default=True,
        ),
        kpi_targets=normalize_kpi_targets(_first(config, ("kpi_targets", "kpiTargets"))),
        accounts=normalize_accounts(config.get("accounts")),
    )


def resolve_account_id(value: Any, accounts: Sequence[Account], default_account_id: str) -> str:
    """Account reference by id, or by display name as sent by the browser extension."""
    text = _text(value)
    if not text:
        return default_account_id
    if any(account.id == text for account in accounts):
        return text
    for account in accounts:
        if account.name.lower() == text.lower():
            return account.id
    return text


def _default_account_id(accounts: Sequence[Account]) -> str:
    return accounts[0].id if accounts else DEFAULT_ACCOUNTS[0]["id"]


def normalize_log(
    raw: Any,
    default_account_id: str = DEFAULT_ACCOUNTS[0]["id"],
    accounts: Sequence[Account] = (),
) -> DailyLog:
    """
    Build a DailyLog from any historical log shape.

    Counters follow the alias chains (snake → camel → legacy); offer positives
    fall back to the Calendly counter only when it is > 0.
    """
    log = raw.model_dump(mode="json") if isinstance(raw, DailyLog) else _as_mapping(raw)

    counts = {field: clamp_non_neg_int(_first(log, chain)) for field, chain in LOG_COUNT_ALIASES.items()}
    if _first(log, LOG_COUNT_ALIASES["offer_or_booking_intent_positives"]) is None:
        counts["offer_or_booking_intent_positives"] = _calendly_positives(log)

    old_lane = _first(log, OLD_LANE_ALIASES)
    return DailyLog(
        id=_text(log.get("id")) or generate_id(),
        date=_iso_date(log.get("date")),
        account_id=resolve_account_id(_first(log, LOG_TEXT_ALIASES["account_id"]), accounts, default_account_id),
        campaign_tag=_text(_first(log, LOG_TEXT_ALIASES["campaign_tag"])),
        is_old_leads_lane=_as_bool(old_lane) if old_lane is not None else log.get("lane") == "old",
        experiment_id=_text(_first(log, LOG_TEXT_ALIASES["experiment_id"])),
        variant_id=_text(_first(log, LOG_TEXT_ALIASES["variant_id"])),
        notes=_text(log.get("notes")),
        **counts,
    )


def _normalize_variants(experiment: Mapping) -> List[Variant]:
    variants = []
    for index, variant in enumerate(_as_list(experiment.get("variants"))):
        variant = _as_mapping(variant)
        variants.append(Variant(
            id=_text(variant.get("id")) or generate_id(),
            name=_text(_first(variant, ("name", "label"))) or f"Variant {index + 1}",
            message=_text(_first(variant, ("message", "messageText"))),
            step_type=_text(_first(variant, ("step_type", "stepType", "step"))),
        ))
    if variants:
        return variants

    label = _text(experiment.get("messageLabel"))
    message = _text(experiment.get("messageText"))
    return [Variant(id=generate_id(), name=label or "Variant A", message=message)]


def normalize_experiment(raw: Any) -> Experiment:
    """
    Build an Experiment. Metric and required sample derive from the stage
    unless given explicitly; an experiment always ends up with a variant.
    """
    experiment = raw.model_dump(mode="json") if isinstance(raw, Experiment) else _as_mapping(raw)
    stage = coerce_experiment_stage(
        _first(experiment, ("funnel_stage_targeted", "funnelStageTargeted", "stage")),
        _first(experiment, ("experiment_type", "experimentType")),
    )

    required = _first(experiment, ("required_sample_size_seen", "requiredSampleSizeSeen"))
    if required is None or (isinstance(required, str) and not required.strip()):
        required = required_seen_for_stage(stage)

    status = _text(experiment.get("status")).lower()
    return Experiment(
        id=_text(experiment.get("id")) or generate_id(),
        name=_text(experiment.get("name")) or "Untitled Experiment",
        status=ExperimentStatus(status) if status in {s.value for s in ExperimentStatus} else ExperimentStatus.ACTIVE,
        hypothesis=_text(experiment.get("hypothesis")),
        notes=_text(experiment.get("notes")),
        created_at=_text(_first(experiment, ("created_at", "createdAt"))) or _now_iso(),
        funnel_stage_targeted=stage,
        primary_metric=coerce_primary_metric(_first(experiment, ("primary_metric", "primaryMetric")), stage),
        required_sample_size_seen=clamp_non_neg_int(required),
        variants=_normalize_variants(experiment),
    )


def normalize_prospect(
    raw: Any,
    default_account_id: str = DEFAULT_ACCOUNTS[0]["id"],
    accounts: Sequence[Account] = (),
) -> Prospect:
    prospect = raw.model_dump(mode="json") if isinstance(raw, Prospect) else _as_mapping(raw)
    old_lane = _first(prospect, OLD_LANE_ALIASES)
    return Prospect(
        id=_text(prospect.get("id")) or generate_id(),
        name=_text(prospect.get("name")) or "Untitled",
        linkedin_url=_text(_first(prospect, ("linkedin_url", "linkedinUrl", "profileLink"))),
        account_id=resolve_account_id(_first(prospect, ("account_id", "accountId")), accounts, default_account_id),
        stage=normalize_lead_stage(prospect.get("stage")),
        is_old_leads_lane=_as_bool(old_lane) if old_lane is not None else prospect.get("lane") == "old",
        notes=_text(prospect.get("notes")),
    )


def _normalize_current(state: Mapping) -> AppState:
    config = normalize_config(state.get("config"))
    default_account_id = _default_account_id(config.accounts)
    ui = _as_mapping(state.get("ui"))

    return AppState(
        config=config,
        logs=[
            normalize_log(log, default_account_id, config.accounts)
            for log in _as_list(state.get("logs"))
            if isinstance(log, Mapping)
        ],
        experiments=[
            normalize_experiment(experiment)
            for experiment in _as_list(state.get("experiments"))
            if isinstance(experiment, Mapping)
        ],
        prospects=[
            normalize_prospect(prospect, default_account_id, config.accounts)
            for prospect in _as_list(state.get("prospects"))
            if isinstance(prospect, Mapping)
        ],
        ui=UiState(is_dark=_as_bool(_first(ui, ("is_dark", "isDark")), default=True)),
    )


def normalize_state(raw: Any) -> AppState:
    """
    Normalize raw state of any generation into an AppState.

    Accepts an AppState, a PersistedState, a persisted envelope dict or a bare
    state dict. Total: None or garbage yields the default state. Normalizing
    an already-normalized state returns an equal state.
    """
    body, declared, _ = unwrap_envelope(raw)
    version = detect_schema_version(body, declared)
    if version < SCHEMA_VERSION:
        logger.info("Migrating state from schema v%d to v%d", version, SCHEMA_VERSION)
        body = migrate(body, version)
    return _normalize_current(body)


def default_state() -> AppState:
    return normalize_state({})
