"""
DM Lab — Experiments Router
=============================

Experiment and variant management plus per-variant evaluation.

Endpoints:
  GET    /api/experiments                               - List experiments
  POST   /api/experiments                               - Create an experiment
  PUT    /api/experiments/{id}                          - Update an experiment
  DELETE /api/experiments/{id}                          - Delete (logs keep their references)
  POST   /api/experiments/{id}/variants                 - Add a variant
  PUT    /api/experiments/{id}/variants/{variant_id}    - Update a variant
  DELETE /api/experiments/{id}/variants/{variant_id}    - Remove a variant (never the last)
  GET    /api/experiments/{id}/evaluation               - Variant stats + winner
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from dashboard.api.deps import filter_params, get_container, run_action
from models.analytics_models import FilterCriteria, VariantCreate
from models.dmlab_models import ExperimentStatus
from scripts.dmlab.experiment_evaluator import evaluate_experiment
from scripts.dmlab.state_actions import (
    add_experiment,
    add_variant,
    delete_experiment,
    remove_variant,
    update_experiment,
    update_variant,
)
from scripts.lib.logger import setup_logger

logger = setup_logger("dmlab_experiments_router")

router = APIRouter(prefix="/api/experiments", tags=["experiments"])


@router.get("")
async def list_experiments(
    status: Optional[ExperimentStatus] = Query(None, description="Filter by status"),
):
    try:
        experiments = get_container().state.experiments
        if status is not None:
            experiments = [e for e in experiments if e.status == status]
        return {"results": experiments, "count": len(experiments)}
    except Exception as e:
        logger.error("List experiments failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to fetch experiments")


@router.post("", status_code=201)
async def create_experiment(body: Dict[str, Any] = Body(...)):
    """Create an experiment. Metric and sample size default from the targeted stage."""
    if not str(body.get("name") or "").strip():
        raise HTTPException(status_code=400, detail="Experiment name is required")
    return run_action(add_experiment, body).item


@router.put("/{experiment_id}")
async def edit_experiment(experiment_id: str, body: Dict[str, Any] = Body(...)):
    if not body:
        raise HTTPException(status_code=400, detail="No fields to update")
    return run_action(update_experiment, experiment_id, body).item


@router.delete("/{experiment_id}")
async def remove_experiment(experiment_id: str):
    run_action(delete_experiment, experiment_id)
    return {"deleted": experiment_id}


@router.post("/{experiment_id}/variants", status_code=201)
async def create_variant(experiment_id: str, body: VariantCreate):
    return run_action(add_variant, experiment_id, body.model_dump(exclude_none=True)).item


@router.put("/{experiment_id}/variants/{variant_id}")
async def edit_variant(experiment_id: str, variant_id: str, body: Dict[str, Any] = Body(...)):
    return run_action(update_variant, experiment_id, variant_id, body).item


@router.delete("/{experiment_id}/variants/{variant_id}")
async def delete_variant(experiment_id: str, variant_id: str):
    run_action(remove_variant, experiment_id, variant_id)
    return {"deleted": variant_id}


@router.get("/{experiment_id}/evaluation")
async def experiment_evaluation(
    experiment_id: str,
    criteria: FilterCriteria = Depends(filter_params),
):
    """Per-variant KPIs, sample validity and the winner (null when no variant is valid)."""
    state = get_container().state
    experiment = state.get_experiment(experiment_id)
    if experiment is None:
        raise HTTPException(status_code=404, detail="Experiment not found")
    try:
        evaluation = evaluate_experiment(experiment, state.logs, criteria, state.config)
        return {
            **evaluation.model_dump(mode="json"),
            "insufficient_sample": evaluation.insufficient_sample,
        }
    except Exception as e:
        logger.error("Evaluate experiment %s failed: %s", experiment_id, e)
        raise HTTPException(status_code=500, detail="Failed to evaluate experiment")
