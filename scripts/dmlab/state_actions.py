"""
DM Lab — State Actions
========================

Discrete read-modify-write handlers over AppState. Every action takes the
current state, never mutates it, and returns an ActionResult carrying the
next state (or the unchanged state plus a rejection code).

Rejections:
  NOT_FOUND       - referenced log/experiment/variant/prospect/account missing
  LAST_VARIANT    - removing the only variant of an experiment
  LAST_ACCOUNT    - deleting the only account
  ACCOUNT_IN_USE  - deleting an account still referenced by logs or prospects
  DUPLICATE_ID    - id already taken
  INVALID_ID      - empty id

Cascades: only rename_account_id() rewrites references. Deleting variants
or experiments leaves logs with orphaned references.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from models.dmlab_models import Account, AppState, DailyLog, Experiment, Prospect, Variant
from scripts.dmlab.schema_normalizer import (
    EXPERIMENT_FIELD_ALIASES,
    LOG_FIELD_ALIASES,
    PROSPECT_FIELD_ALIASES,
    VARIANT_FIELD_ALIASES,
    canonicalize_keys,
    coerce_experiment_stage,
    generate_id,
    normalize_experiment,
    normalize_kpi_targets,
    normalize_log,
    normalize_prospect,
    normalize_weekly_goals,
    primary_metric_for_stage,
    required_seen_for_stage,
)
from scripts.lib.errors import ActionRejectedError
from scripts.lib.logger import setup_logger

logger = setup_logger("state_actions")

NOT_FOUND = "NOT_FOUND"
LAST_VARIANT = "LAST_VARIANT"
LAST_ACCOUNT = "LAST_ACCOUNT"
ACCOUNT_IN_USE = "ACCOUNT_IN_USE"
DUPLICATE_ID = "DUPLICATE_ID"
INVALID_ID = "INVALID_ID"


# ─── Result ─────────────────────────────────────────────────

@dataclass
class ActionResult:
    """Outcome of a state action."""
    ok: bool
    state: AppState
    item: Any = None
    code: Optional[str] = None
    reason: str = ""

    def raise_for_rejection(self) -> "ActionResult":
        if not self.ok:
            raise ActionRejectedError(self.reason, code=self.code or "ACTION_REJECTED")
        return self


def _accepted(state: AppState, item: Any = None) -> ActionResult:
    return ActionResult(ok=True, state=state, item=item)


def _rejected(state: AppState, code: str, reason: str) -> ActionResult:
    logger.info("Rejected action (%s): %s", code, reason)
    return ActionResult(ok=False, state=state, code=code, reason=reason)


def _copy(state: AppState) -> AppState:
    return state.model_copy(deep=True)


def _default_account_id(state: AppState) -> str:
    return state.config.accounts[0].id if state.config.accounts else "account_1"


def _sort_newest_first(state: AppState) -> None:
    state.logs = sorted(state.logs, key=lambda log: log.date, reverse=True)


# ─── Logs ───────────────────────────────────────────────────

def add_log(state: AppState, raw: Mapping[str, Any] | DailyLog) -> ActionResult:
    """Normalize any raw log shape, assign an id and keep logs newest-first."""
    log = normalize_log(raw, _default_account_id(state), state.config.accounts)
    if state.get_log(log.id):
        return _rejected(state, DUPLICATE_ID, f"Log {log.id} already exists")

    nxt = _copy(state)
    nxt.logs = nxt.logs + [log]
    _sort_newest_first(nxt)
    return _accepted(nxt, log)


def update_log(state: AppState, log_id: str, updates: Mapping[str, Any]) -> ActionResult:
    current = state.get_log(log_id)
    if current is None:
        return _rejected(state, NOT_FOUND, f"Log {log_id} not found")

    merged = {**current.model_dump(mode="json"), **canonicalize_keys(updates, LOG_FIELD_ALIASES), "id": log_id}
    log = normalize_log(merged, _default_account_id(state), state.config.accounts)

    nxt = _copy(state)
    nxt.logs = [log if existing.id == log_id else existing for existing in nxt.logs]
    _sort_newest_first(nxt)
    return _accepted(nxt, log)


def delete_log(state: AppState, log_id: str) -> ActionResult:
    if state.get_log(log_id) is None:
        return _rejected(state, NOT_FOUND, f"Log {log_id} not found")
    nxt = _copy(state)
    nxt.logs = [log for log in nxt.logs if log.id != log_id]
    return _accepted(nxt)


# ─── Experiments ────────────────────────────────────────────

def add_experiment(state: AppState, raw: Mapping[str, Any] | Experiment) -> ActionResult:
    """
    New experiments go first. Metric and required sample derive from the
    stage unless given; a "Variant A" is synthesized when no variant is.
    """
    experiment = normalize_experiment(raw)
    if state.get_experiment(experiment.id):
        return _rejected(state, DUPLICATE_ID, f"Experiment {experiment.id} already exists")

    nxt = _copy(state)
    nxt.experiments = [experiment] + nxt.experiments
    return _accepted(nxt, experiment)


def update_experiment(state: AppState, experiment_id: str, updates: Mapping[str, Any]) -> ActionResult:
    """Changing the targeted stage re-derives metric and sample size unless the update sets them."""
    current = state.get_experiment(experiment_id)
    if current is None:
        return _rejected(state, NOT_FOUND, f"Experiment {experiment_id} not found")

    changes = canonicalize_keys(updates, EXPERIMENT_FIELD_ALIASES)
    if "funnel_stage_targeted" in changes:
        stage = coerce_experiment_stage(changes["funnel_stage_targeted"])
        if stage != current.funnel_stage_targeted:
            changes.setdefault("primary_metric", primary_metric_for_stage(stage).value)
            changes.setdefault("required_sample_size_seen", required_seen_for_stage(stage))

    experiment = normalize_experiment({**current.model_dump(mode="json"), **changes, "id": experiment_id})
    return _replace_experiment(state, experiment)


def _replace_experiment(state: AppState, experiment: Experiment) -> ActionResult:
    nxt = _copy(state)
    nxt.experiments = [experiment if e.id == experiment.id else e for e in nxt.experiments]
    return _accepted(nxt, experiment)


def delete_experiment(state: AppState, experiment_id: str) -> ActionResult:
    if state.get_experiment(experiment_id) is None:
        return _rejected(state, NOT_FOUND, f"Experiment {experiment_id} not found")
    nxt = _copy(state)
    nxt.experiments = [e for e in nxt.experiments if e.id != experiment_id]
    return _accepted(nxt)


def _next_variant_name(experiment: Experiment) -> str:
    return f"Variant {len(experiment.variants) + 1}"


def add_variant(state: AppState, experiment_id: str, raw: Optional[Mapping[str, Any]] = None) -> ActionResult:
    experiment = state.get_experiment(experiment_id)
    if experiment is None:
        return _rejected(state, NOT_FOUND, f"Experiment {experiment_id} not found")

    fields = canonicalize_keys(raw or {}, VARIANT_FIELD_ALIASES)
    variant = Variant(
        id=str((raw or {}).get("id") or generate_id()),
        name=str(fields.get("name") or "").strip() or _next_variant_name(experiment),
        message=str(fields.get("message") or ""),
        step_type=str(fields.get("step_type") or ""),
    )
    if experiment.get_variant(variant.id):
        return _rejected(state, DUPLICATE_ID, f"Variant {variant.id} already exists")

    updated = experiment.model_copy(deep=True)
    updated.variants = updated.variants + [variant]
    result = _replace_experiment(state, updated)
    result.item = variant
    return result


def update_variant(
    state: AppState,
    experiment_id: str,
    variant_id: str,
    updates: Mapping[str, Any],
) -> ActionResult:
    experiment = state.get_experiment(experiment_id)
    if experiment is None or experiment.get_variant(variant_id) is None:
        return _rejected(state, NOT_FOUND, f"Variant {variant_id} not found in experiment {experiment_id}")

    changes = canonicalize_keys(updates, VARIANT_FIELD_ALIASES)
    updated = experiment.model_copy(deep=True)
    variant = updated.get_variant(variant_id)
    for field, value in changes.items():
        text = str(value).strip() if field == "name" else str(value)
        if field != "name" or text:
            setattr(variant, field, text)

    result = _replace_experiment(state, updated)
    result.item = variant
    return result


def remove_variant(state: AppState, experiment_id: str, variant_id: str) -> ActionResult:
    """Rejected for the last variant. Logs referencing the variant are kept."""
    experiment = state.get_experiment(experiment_id)
    if experiment is None or experiment.get_variant(variant_id) is None:
        return _rejected(state, NOT_FOUND, f"Variant {variant_id} not found in experiment {experiment_id}")
    if len(experiment.variants) <= 1:
        return _rejected(state, LAST_VARIANT, f"Experiment {experiment_id} must keep at least one variant")

    updated = experiment.model_copy(deep=True)
    updated.variants = [v for v in updated.variants if v.id != variant_id]
    return _replace_experiment(state, updated)


# ─── Prospects ──────────────────────────────────────────────

def add_prospect(state: AppState, raw: Mapping[str, Any] | Prospect) -> ActionResult:
    prospect = normalize_prospect(raw, _default_account_id(state), state.config.accounts)
    if state.get_prospect(prospect.id):
        return _rejected(state, DUPLICATE_ID, f"Prospect {prospect.id} already exists")

    nxt = _copy(state)
    nxt.prospects = [prospect] + nxt.prospects
    return _accepted(nxt, prospect)


def update_prospect(state: AppState, prospect_id: str, updates: Mapping[str, Any]) -> ActionResult:
    current = state.get_prospect(prospect_id)
    if current is None:
        return _rejected(state, NOT_FOUND, f"Prospect {prospect_id} not found")

    merged = {
        **current.model_dump(mode="json"),
        **canonicalize_keys(updates, PROSPECT_FIELD_ALIASES),
        "id": prospect_id,
    }
    prospect = normalize_prospect(merged, _default_account_id(state), state.config.accounts)

    nxt = _copy(state)
    nxt.prospects = [prospect if p.id == prospect_id else p for p in nxt.prospects]
    return _accepted(nxt, prospect)


def delete_prospect(state: AppState, prospect_id: str) -> ActionResult:
    if state.get_prospect(prospect_id) is None:
        return _rejected(state, NOT_FOUND, f"Prospect {prospect_id} not found")
    nxt = _copy(state)
    nxt.prospects = [p for p in nxt.prospects if p.id != prospect_id]
    return _accepted(nxt)


# ─── Settings ───────────────────────────────────────────────

def update_kpi_targets(state: AppState, partial: Mapping[str, Any]) -> ActionResult:
    """Merge a partial target mapping (clamped at 0) over the current targets."""
    nxt = _copy(state)
    nxt.config.kpi_targets = normalize_kpi_targets(partial, base=state.config.kpi_targets)
    return _accepted(nxt, nxt.config.kpi_targets)


def update_config(
    state: AppState,
    autosave: Optional[bool] = None,
    exclude_old_leads_from_kpi: Optional[bool] = None,
) -> ActionResult:
    nxt = _copy(state)
    if autosave is not None:
        nxt.config.autosave = bool(autosave)
    if exclude_old_leads_from_kpi is not None:
        nxt.config.exclude_old_leads_from_kpi = bool(exclude_old_leads_from_kpi)
    return _accepted(nxt, nxt.config)


def _next_account_id(state: AppState) -> str:
    taken = {account.id for account in state.config.accounts}
    index = len(taken) + 1
    while f"account_{index}" in taken:
        index += 1
    return f"account_{index}"


def add_account(
    state: AppState,
    name: str,
    account_id: Optional[str] = None,
    weekly_goals: Optional[Mapping[str, Any]] = None,
) -> ActionResult:
    if account_id is not None and not account_id.strip():
        return _rejected(state, INVALID_ID, "Account id must not be empty")
    account_id = account_id.strip() if account_id else _next_account_id(state)
    if state.get_account(account_id):
        return _rejected(state, DUPLICATE_ID, f"Account {account_id} already exists")

    account = Account(
        id=account_id,
        name=(name or "").strip() or f"Account {len(state.config.accounts) + 1}",
        weekly_goals=normalize_weekly_goals(weekly_goals),
    )
    nxt = _copy(state)
    nxt.config.accounts = nxt.config.accounts + [account]
    return _accepted(nxt, account)


def update_account(
    state: AppState,
    account_id: str,
    name: Optional[str] = None,
    weekly_goals: Optional[Mapping[str, Any]] = None,
) -> ActionResult:
    current = state.get_account(account_id)
    if current is None:
        return _rejected(state, NOT_FOUND, f"Account {account_id} not found")

    nxt = _copy(state)
    account = nxt.get_account(account_id)
    if name is not None and name.strip():
        account.name = name.strip()
    if weekly_goals is not None:
        account.weekly_goals = normalize_weekly_goals(weekly_goals, fallback=current.weekly_goals.model_dump())
    return _accepted(nxt, account)


def rename_account_id(state: AppState, old_id: str, new_id: str) -> ActionResult:
    """Rename an account id and rewrite every log and prospect referencing it."""
    if state.get_account(old_id) is None:
        return _rejected(state, NOT_FOUND, f"Account {old_id} not found")
    new_id = (new_id or "").strip()
    if not new_id:
        return _rejected(state, INVALID_ID, "Account id must not be empty")
    if new_id == old_id:
        return _accepted(state, state.get_account(old_id))
    if state.get_account(new_id):
        return _rejected(state, DUPLICATE_ID, f"Account {new_id} already exists")

    nxt = _copy(state)
    nxt.get_account(old_id).id = new_id
    moved: Dict[str, int] = {"logs": 0, "prospects": 0}
    for log in nxt.logs:
        if log.account_id == old_id:
            log.account_id = new_id
            moved["logs"] += 1
    for prospect in nxt.prospects:
        if prospect.account_id == old_id:
            prospect.account_id = new_id
            moved["prospects"] += 1

    logger.info(
        "Renamed account %s → %s (%d logs, %d prospects)",
        old_id, new_id, moved["logs"], moved["prospects"],
    )
    return _accepted(nxt, nxt.get_account(new_id))


def delete_account(state: AppState, account_id: str) -> ActionResult:
    """Never cascades: rejected while any log or prospect still references the account."""
    if state.get_account(account_id) is None:
        return _rejected(state, NOT_FOUND, f"Account {account_id} not found")
    if len(state.config.accounts) <= 1:
        return _rejected(state, LAST_ACCOUNT, "At least one account is required")
    in_use = sum(1 for log in state.logs if log.account_id == account_id)
    in_use += sum(1 for p in state.prospects if p.account_id == account_id)
    if in_use:
        return _rejected(state, ACCOUNT_IN_USE, f"Account {account_id} is referenced by {in_use} records")

    nxt = _copy(state)
    nxt.config.accounts = [a for a in nxt.config.accounts if a.id != account_id]
    return _accepted(nxt)
