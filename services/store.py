from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker
from datetime import datetime, timezone
from typing import Any, Protocol
from data.database import Event, Experiment, Variant, DeploymentLog, SessionLocal
from models.events import EventCreate, EventRecord
from models.experiments import ExperimentCreate, ExperimentRecord, ExperimentStatus, ExperimentResponse, RejectedExperiment
from models.results import ExperimentOutcome
from services.errors import StaleTransitionError, StorageError
from pydantic import ValidationError
import contextlib
import json
import logging

logger = logging.getLogger(__name__)

# Fields the lifecycle controller is allowed to write on an experiment
WRITABLE_FIELDS = {"status", "results", "paused_reason", "paused_at", "completed_at", "completion_reason"}


class ExperimentStore(Protocol):
    """Record store contract used by the sweep."""

    def list_experiments(self) -> tuple[list[ExperimentRecord], list[RejectedExperiment]]: ...

    def list_events(self) -> list[EventRecord]: ...

    def update_experiment(self, experiment_id: int, fields: dict[str, Any],
                          expected_status: ExperimentStatus | None = None) -> None: ...

    def create_deployment_log(self, **fields) -> None: ...


def _utc(value: datetime | None) -> datetime | None:
    # SQLite drops the offset, so everything is written as UTC
    return value.astimezone(timezone.utc) if value is not None and value.tzinfo else value


def _to_record(row: Experiment, model=ExperimentRecord) -> ExperimentRecord:
    data = row.to_dict(exclude_relationships_key=["deployments"])
    data["metadata"] = data.get("metadata") or {}
    for variant in data.get("variants") or []:
        variant["config"] = variant.get("config") or {}
    return model.model_validate(data)


def _to_column_values(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - WRITABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not writable by the lifecycle controller: {sorted(unknown)}")

    values = {}
    for key, value in fields.items():
        if key == "results":
            outcome: ExperimentOutcome | None = value
            values["results_json"] = outcome.model_dump_json() if outcome is not None else None
        elif isinstance(value, ExperimentStatus):
            values[key] = value.value
        elif isinstance(value, datetime):
            values[key] = _utc(value)
        else:
            values[key] = value
    return values


class SqlExperimentStore:
    """SQLAlchemy implementation. Every call uses its own session, so workers never share one."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    @contextlib.contextmanager
    def session(self):
        db: Session = self.session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(str(e)) from e
        finally:
            db.close()

    # --- Sweep reads (bulk) ---

    def list_experiments(self) -> tuple[list[ExperimentRecord], list[RejectedExperiment]]:
        """
        All experiments, plus the rows that could not be parsed (bad JSON,
        out of range settings). One bad row never hides the others.
        """
        records, rejected = [], []
        with self.session() as db:
            rows = db.query(Experiment).options(selectinload(Experiment.variants)).order_by(Experiment.id).all()
            for row in rows:
                try:
                    records.append(_to_record(row))
                except (ValidationError, json.JSONDecodeError) as e:
                    logger.warning("experiment %d could not be read: %s", row.id, e)
                    rejected.append(RejectedExperiment(id=row.id, name=row.name, error=str(e)))
        return records, rejected

    def list_events(self) -> list[EventRecord]:
        with self.session() as db:
            rows = db.query(
                Event.experiment_id, Event.variant_id, Event.event_type, Event.timestamp, Event.user_id
            ).order_by(Event.id).all()
            return [
                EventRecord(
                    experiment_id=experiment_id,
                    variant_id=variant_id,
                    event_type=event_type,
                    timestamp=timestamp,
                    user_id=user_id,
                )
                for experiment_id, variant_id, event_type, timestamp, user_id in rows
            ]

    def list_events_for(self, experiment_id: int) -> list[EventRecord]:
        with self.session() as db:
            rows = db.query(Event).filter(Event.experiment_id == experiment_id).order_by(Event.id).all()
            return [EventRecord.model_validate(row.to_dict()) for row in rows]

    def get_experiment(self, experiment_id: int) -> ExperimentResponse | None:
        with self.session() as db:
            row = db.query(Experiment).filter(Experiment.id == experiment_id).one_or_none()
            return _to_record(row, model=ExperimentResponse) if row else None

    # --- Transition writes ---

    def update_experiment(self, experiment_id: int, fields: dict[str, Any],
                          expected_status: ExperimentStatus | None = None) -> None:
        """
        Apply `fields` in a single commit. With `expected_status` the write is a
        compare-and-set on the current status, so a concurrent sweep cannot
        overwrite a transition that already happened.
        """
        values = _to_column_values(fields)
        statement = update(Experiment).where(Experiment.id == experiment_id)
        if expected_status is not None:
            statement = statement.where(Experiment.status == expected_status.value)

        with self.session() as db:
            result = db.execute(statement.values(**values))
            if result.rowcount == 0:
                db.rollback()
                if expected_status is not None:
                    raise StaleTransitionError(experiment_id, expected_status.value)
                raise StorageError(f"Experiment {experiment_id} not found.")
            db.commit()

        logger.info("experiment %d updated: %s", experiment_id, sorted(fields))

    def create_deployment_log(self, **fields) -> None:
        with self.session() as db:
            db.add(DeploymentLog(**fields))
            db.commit()
        logger.info("deployment log %s recorded for experiment %s", fields.get("pipeline_id"), fields.get("experiment_id"))

    # --- Ingest (used by the API) ---

    def create_experiment(self, experiment_data: ExperimentCreate) -> ExperimentResponse:
        """Creates a new experiment and its associated variants."""
        with self.session() as db:
            db_experiment = Experiment(
                name=experiment_data.name,
                description=experiment_data.description,
                status=experiment_data.status.value,
                start_date=_utc(experiment_data.start_date),
                end_date=_utc(experiment_data.end_date),
                metadata_json=experiment_data.metadata.model_dump_json(),
            )
            db.add(db_experiment)
            db.flush() # Flush to get the experiment ID before committing

            for v in experiment_data.variants:
                db.add(Variant(
                    experiment_id=db_experiment.id,
                    name=v.name,
                    config_json=json.dumps(v.config),
                ))

            db.commit()
            db.refresh(db_experiment)
            logger.info("create new experiment %s success with experiment id: %d", experiment_data.name, db_experiment.id)
            return _to_record(db_experiment, model=ExperimentResponse)

    def record_event(self, event_data: EventCreate) -> None:
        with self.session() as db:
            db.add(Event(
                experiment_id=event_data.experiment_id,
                variant_id=event_data.variant_id,
                event_type=event_data.event_type,
                user_id=event_data.user_id,
                timestamp=_utc(event_data.timestamp),
                properties_json=json.dumps(event_data.properties) if event_data.properties else None,
            ))
            db.commit()

    def list_deployment_logs(self, experiment_id: int) -> list[dict]:
        with self.session() as db:
            rows = db.query(DeploymentLog).filter(DeploymentLog.experiment_id == experiment_id).all()
            return [row.to_dict(include_relationships=False) for row in rows]


def get_store() -> SqlExperimentStore:
    return SqlExperimentStore()
