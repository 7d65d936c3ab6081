from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from typing import Any
from models.events import EventCreate, EventType
from api.depends import CLIENT_AUTH

# Import the Celery task
from celery_tasks.event_tasks import insert_event_to_db
import logging

logger = logging.getLogger(__name__)

events_router = APIRouter(
    prefix="/events",
    tags=["events"],
    dependencies=[CLIENT_AUTH]
)

@events_router.post("", status_code=status.HTTP_202_ACCEPTED)
def record_event_route(event_data: EventCreate):
    """
    Record an impression or conversion for a variant.
    The event is queued to a celery worker which inserts it; this returns immediately.
    """
    if event_data.event_type not in {t.value for t in EventType}:
        # Stored anyway, the sweep ignores types it does not count
        logger.info("recording event with unrecognized type %s", event_data.event_type)

    # Celery requires simple serializable types (ISO strings for datetimes)
    task_payload: dict[str, Any] = event_data.model_dump(mode="json")

    task = insert_event_to_db.delay(task_payload)
    logger.debug("insert_event_to_db task id: %s", task.id)

    return JSONResponse(content={"status": "queued", "task_id": task.id}, status_code=status.HTTP_202_ACCEPTED)
