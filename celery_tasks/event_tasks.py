from celery_config import celery_app
from models.events import EventCreate
from services.errors import StorageError
from services.store import SqlExperimentStore
from typing import Any
import logging

logger = logging.getLogger(__name__)

# ignore result flag in celery as we don't need the result and reduced storage bloat
@celery_app.task(bind=True, max_retries=3, default_retry_delay=30, ignore_result=True)
def insert_event_to_db(self, event_data_dict: dict[str, Any]):
    """
    Asynchronously inserts a recorded event into the database.
    Events are append-only, the sweep reads them in bulk.
    """
    event_data = EventCreate.model_validate(event_data_dict)
    try:
        SqlExperimentStore().record_event(event_data)
        logger.info("Task %s[%s]. Inserted %s event for experiment %d variant %d.",
                    self.name, self.request.id, event_data.event_type,
                    event_data.experiment_id, event_data.variant_id)
    except StorageError as exc:
        logger.error("Failed to insert event to DB: %s. Retrying...", exc)
        raise self.retry(exc=exc)
