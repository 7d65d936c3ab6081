from fastapi import APIRouter, HTTPException, status
from models.sweep import SweepReport
from services.cache import CacheClient
from services.store import SqlExperimentStore
from services.sweep import get_sweep_orchestrator
from api.depends import CLIENT_AUTH, STORE_DEPENDENCY, CACHE_CLIENT
import logging

logger = logging.getLogger(__name__)

sweep_router = APIRouter(
    prefix="/sweeps",
    tags=["sweeps"],
    dependencies=[CLIENT_AUTH],
)


@sweep_router.post("", response_model=SweepReport, status_code=status.HTTP_200_OK)
def run_sweep_route(
    store: SqlExperimentStore = STORE_DEPENDENCY,
    cache: CacheClient = CACHE_CLIENT,
):
    """
    Run one lifecycle sweep now and return its report.
    The scheduled celery beat task runs the same sweep.
    """
    orchestrator = get_sweep_orchestrator(store=store, lock=cache)
    return orchestrator.run_sweep()


@sweep_router.get("/latest", response_model=SweepReport)
def latest_sweep_route(cache: CacheClient = CACHE_CLIENT):
    """Report of the most recent sweep, manual or scheduled."""
    report = cache.get_last_report()
    if not report:
        raise HTTPException(status_code=404, detail="No sweep has run yet.")
    return report
