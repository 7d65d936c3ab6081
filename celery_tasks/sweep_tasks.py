from celery_config import celery_app
from services.sweep import get_sweep_orchestrator
import logging

logger = logging.getLogger(__name__)

# No retries: the next scheduled run is the retry, and a sweep never raises
@celery_app.task(bind=True, ignore_result=False)
def run_lifecycle_sweep(self):
    """Scheduled entry point: run one sweep and return its summary."""
    report = get_sweep_orchestrator().run_sweep()
    if report.skipped_reason:
        logger.info("Task %s[%s] skipped: %s", self.name, self.request.id, report.skipped_reason)
    return report.model_dump(mode="json", include={"sweep_id", "summary", "skipped_reason", "error"})
