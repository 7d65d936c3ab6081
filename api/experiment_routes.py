from fastapi import APIRouter, HTTPException, status

from models.experiments import ExperimentCreate, ExperimentResponse
from models.results import ExperimentResultsSummary
from services import results
from services.store import SqlExperimentStore
from api.depends import CLIENT_AUTH, STORE_DEPENDENCY

import logging

logger = logging.getLogger(__name__)

experiment_router = APIRouter(
    prefix="/experiments",
    tags=["experiments"],
    dependencies=[CLIENT_AUTH], # CLIENT_AUTH is applied to all routes in this router
)


@experiment_router.post(
    "",
    response_model=ExperimentResponse,
    status_code=status.HTTP_201_CREATED
)
def create_experiment_route(
    experiment_data: ExperimentCreate,
    store: SqlExperimentStore = STORE_DEPENDENCY
):
    """Register an experiment, its variants and automation settings."""
    if experiment_data.start_date and experiment_data.end_date and experiment_data.end_date <= experiment_data.start_date:
        raise HTTPException(status_code=400, detail="end_date must be after start_date.")
    return store.create_experiment(experiment_data)


@experiment_router.get("/{experiment_id}", response_model=ExperimentResponse)
def get_experiment_route(
    experiment_id: int,
    store: SqlExperimentStore = STORE_DEPENDENCY
):
    """Current lifecycle state, including the results snapshot once completed."""
    experiment = store.get_experiment(experiment_id)
    if not experiment:
        raise HTTPException(status_code=404, detail="Experiment not found.")
    return experiment


# GET /experiments/{id}/results
@experiment_router.get("/{experiment_id}/results", response_model=ExperimentResultsSummary)
def get_experiment_results_route(
    experiment_id: int,
    store: SqlExperimentStore = STORE_DEPENDENCY
):
    """
    Live per-variant statistics and significance, computed exactly as the sweep does.
    """
    return results.calculate_summary(store=store, experiment_id=experiment_id)
