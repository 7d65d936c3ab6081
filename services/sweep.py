"""
Periodic lifecycle sweep.

One sweep loads every experiment and every event once, evaluates each
experiment on a bounded worker pool and applies at most one transition per
experiment. Nothing that goes wrong for a single experiment stops the sweep:
it is recorded in the report and the next experiment is processed.
"""
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from typing import Iterable

from config import config
from middleware import bind_context_id, new_context_id
from models.events import EventRecord, as_utc
from models.experiments import ExperimentRecord
from models.sweep import ExperimentSweepResult, SweepReport, SweepSummary, TransitionKind
from services.cache import CacheClient, get_cache_client
from services.deployment import DeploymentTrigger, get_deployment_trigger
from services.errors import (
    AbandonedTransitionError,
    DeploymentError,
    MalformedExperimentError,
    StaleTransitionError,
)
from services.lifecycle import LifecycleThresholds, TransitionDecision, can_transition, decide
from services.notifications import Notifier, get_notifier
from services.store import ExperimentStore, SqlExperimentStore
import contextvars
import logging
import threading

logger = logging.getLogger(__name__)

COMPLETION_KINDS = (TransitionKind.WINNER_DECLARED, TransitionKind.EXPIRED)
NOTIFY_KINDS = COMPLETION_KINDS + (TransitionKind.PAUSED_LOW_PERFORMANCE,)


class WriteGate:
    """
    Decides, for one experiment, between the worker's transition write and
    the sweep giving up on it. Whichever takes the lock first wins: a worker
    that finds the gate abandoned never writes, and a sweep that finds the
    write done waits for the worker's real result instead.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.abandoned = False
        self.written = False

    def __enter__(self):
        self._lock.acquire()
        if self.abandoned:
            self._lock.release()
            raise AbandonedTransitionError("sweep stopped waiting, transition not applied")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.written = exc_type is None
        self._lock.release()
        return False

    def abandon(self) -> bool:
        """Mark the experiment abandoned. False when its write already went through."""
        with self._lock:
            if self.written:
                return False
            self.abandoned = True
            return True


class SweepOrchestrator:

    def __init__(
        self,
        store: ExperimentStore,
        notifier: Notifier,
        deployer: DeploymentTrigger,
        thresholds: LifecycleThresholds = LifecycleThresholds(),
        lock: CacheClient | None = None,
        max_workers: int = 4,
        experiment_timeout: float = 60.0,
        lock_ttl: int = 600,
        default_recipients: Iterable[str] = (),
    ):
        self.store = store
        self.notifier = notifier
        self.deployer = deployer
        self.thresholds = thresholds
        self.lock = lock
        self.max_workers = max(1, max_workers)
        self.experiment_timeout = experiment_timeout
        self.lock_ttl = lock_ttl
        self.default_recipients = list(default_recipients)

    # --- Entry point ---

    def run_sweep(self, now: datetime | None = None) -> SweepReport:
        """Run one sweep now. Always returns a report, even when everything failed."""
        now = as_utc(now) if now else datetime.now(timezone.utc)
        sweep_id = new_context_id("sweep-")

        with bind_context_id(sweep_id):
            report = SweepReport(sweep_id=sweep_id, started_at=now)

            if self.lock and not self.lock.acquire_sweep_lock(sweep_id, self.lock_ttl):
                report.skipped_reason = "another sweep is already running"
                report.finished_at = datetime.now(timezone.utc)
                return report

            logger.info("sweep started at %s", now.isoformat())
            try:
                self._sweep(report, now)
            finally:
                if self.lock:
                    self.lock.release_sweep_lock(sweep_id)
                report.finished_at = datetime.now(timezone.utc)

            report.summary = summarize(report.results)
            logger.info("sweep finished: %s", report.summary.model_dump())

            if self.lock:
                self.lock.set_last_report(report)
            return report

    def _sweep(self, report: SweepReport, now: datetime) -> None:
        try:
            experiments, rejected = self.store.list_experiments()
            events = self.store.list_events()
        except Exception as e:
            logger.exception("sweep could not load experiments and events")
            report.error = f"load failed: {e}"
            return

        for row in rejected:
            report.results.append(ExperimentSweepResult(
                experiment_id=row.id,
                experiment_name=row.name,
                error=f"malformed experiment: {row.error}",
            ))

        events_by_experiment: dict[int, list[EventRecord]] = defaultdict(list)
        for event in events:
            events_by_experiment[event.experiment_id].append(event)

        report.experiments_evaluated = len(experiments) + len(rejected)
        logger.info("evaluating %d experiments against %d events (%d unreadable)",
                    len(experiments), len(events), len(rejected))

        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="sweep")
        try:
            # Each experiment belongs to exactly one worker for the whole sweep.
            # A fresh context copy per task keeps the sweep id on worker log lines.
            tasks = []
            for experiment in experiments:
                gate = WriteGate()
                future = executor.submit(
                    contextvars.copy_context().run,
                    self.process_experiment, experiment, events_by_experiment.get(experiment.id, []), now, gate,
                )
                tasks.append((experiment, gate, future))

            for experiment, gate, future in tasks:
                try:
                    report.results.append(future.result(timeout=self.experiment_timeout))
                except FutureTimeoutError:
                    if not gate.abandon():
                        # The transition is already committed, report what actually happened
                        report.results.append(future.result())
                        continue
                    logger.error("experiment %d timed out after %.1fs", experiment.id, self.experiment_timeout)
                    report.results.append(ExperimentSweepResult(
                        experiment_id=experiment.id,
                        experiment_name=experiment.name,
                        from_status=experiment.status.value,
                        error=f"timed out after {self.experiment_timeout}s",
                    ))
        finally:
            # Abandoned workers cannot write anymore; waiting for them keeps the
            # sweep lock held until no worker of this sweep is left running.
            executor.shutdown(wait=True, cancel_futures=True)

    # --- Per experiment ---

    def process_experiment(
        self,
        experiment: ExperimentRecord,
        events: list[EventRecord],
        now: datetime,
        gate: WriteGate | None = None,
    ) -> ExperimentSweepResult:
        result = ExperimentSweepResult(
            experiment_id=experiment.id,
            experiment_name=experiment.name,
            from_status=experiment.status.value,
        )

        try:
            decision = decide(experiment, events, now, self.thresholds)
        except MalformedExperimentError as e:
            logger.warning("skipping experiment %d: %s", experiment.id, e)
            result.error = str(e)
            return result
        except Exception as e:
            logger.exception("evaluation failed for experiment %d", experiment.id)
            result.error = f"evaluation failed: {e}"
            return result

        if decision is None:
            return result

        if not can_transition(decision.from_status, decision.to_status):
            result.error = f"invalid transition {decision.from_status.value} -> {decision.to_status.value}"
            logger.error("experiment %d: %s", experiment.id, result.error)
            return result

        try:
            with gate or WriteGate():
                self.store.update_experiment(experiment.id, decision.fields, expected_status=decision.from_status)
        except AbandonedTransitionError as e:
            logger.warning("experiment %d: %s", experiment.id, e)
            result.error = str(e)
            return result
        except StaleTransitionError as e:
            # Another sweep got there first, nothing left to do for this one
            logger.info("%s", e)
            result.note = str(e)
            return result
        except Exception as e:
            logger.exception("writing %s transition failed for experiment %d", decision.kind.value, experiment.id)
            result.error = f"write failed: {e}"
            self._notify(
                experiment,
                f"A/B test automation failed: {experiment.name}",
                f"Could not apply '{decision.kind.value}' to experiment {experiment.id}: {e}",
            )
            return result

        result.transition = decision.kind
        result.to_status = decision.to_status.value
        logger.info("experiment %d %s (%s -> %s)", experiment.id, decision.kind.value,
                    decision.from_status.value, decision.to_status.value)

        if decision.kind == TransitionKind.WINNER_DECLARED:
            self._on_winner(experiment, decision, result)

        if decision.kind in NOTIFY_KINDS:
            self._notify(experiment, *transition_message(experiment, decision, result))

        return result

    def _on_winner(self, experiment: ExperimentRecord, decision: TransitionDecision,
                   result: ExperimentSweepResult) -> None:
        outcome = decision.outcome
        winner = next(v for v in experiment.variants if v.id == outcome.winner)
        result.winner_variant_id = winner.id
        result.winner_variant_name = winner.name
        result.confidence_percent = outcome.confidence_level

        if not experiment.metadata.auto_deploy:
            return

        try:
            handle = self.deployer.deploy_winner(experiment, winner)
            result.deployment_pipeline_id = handle.pipeline_id
        except DeploymentError as e:
            logger.error("deployment failed for experiment %d: %s", experiment.id, e)
            result.deployment_pipeline_id = e.pipeline_id
            result.deployment_error = str(e)
        except Exception as e:
            logger.exception("deployment trigger raised for experiment %d", experiment.id)
            result.deployment_error = str(e)

        if result.deployment_error:
            self._notify(
                experiment,
                f"Winner deployment failed: {experiment.name}",
                f"Winner '{winner.name}' was declared but the deployment failed: {result.deployment_error}",
            )

    def _notify(self, experiment: ExperimentRecord, subject: str, body: str) -> None:
        """Fire and forget: failures are logged, never retried within the sweep."""
        recipients = experiment.metadata.notification_recipients or self.default_recipients
        if not recipients:
            return
        try:
            self.notifier.notify(subject, body, recipients)
        except Exception as e:
            logger.warning("notification for experiment %d failed: %s", experiment.id, e)


def transition_message(experiment: ExperimentRecord, decision: TransitionDecision,
                       result: ExperimentSweepResult) -> tuple[str, str]:
    if decision.kind == TransitionKind.WINNER_DECLARED:
        body = (
            f"Experiment '{experiment.name}' completed. Winner: {result.winner_variant_name} "
            f"with {result.confidence_percent}% confidence."
        )
        if result.deployment_pipeline_id and not result.deployment_error:
            body += f" Deployment {result.deployment_pipeline_id} triggered."
        return f"A/B test winner declared: {experiment.name}", body
    if decision.kind == TransitionKind.PAUSED_LOW_PERFORMANCE:
        return (
            f"A/B test paused: {experiment.name}",
            f"Experiment '{experiment.name}' was paused for low performance and will not resume automatically.",
        )
    return (
        f"A/B test completed: {experiment.name}",
        f"Experiment '{experiment.name}' reached its end date without a significant winner.",
    )


def summarize(results: list[ExperimentSweepResult]) -> SweepSummary:
    summary = SweepSummary()
    for r in results:
        if r.transition == TransitionKind.STARTED:
            summary.tests_started += 1
        elif r.transition == TransitionKind.PAUSED_LOW_PERFORMANCE:
            summary.tests_paused += 1
        elif r.transition in COMPLETION_KINDS:
            summary.tests_completed += 1
        if r.transition == TransitionKind.WINNER_DECLARED:
            summary.winners_declared += 1
        if r.deployment_pipeline_id and not r.deployment_error:
            summary.deployments_triggered += 1
        if r.error or r.deployment_error:
            summary.errors += 1
    return summary


def get_sweep_orchestrator(
    store: ExperimentStore | None = None,
    lock: CacheClient | None = None,
) -> SweepOrchestrator:
    """Build an orchestrator wired from configuration."""
    store = store or SqlExperimentStore()
    return SweepOrchestrator(
        store=store,
        notifier=get_notifier(),
        deployer=get_deployment_trigger(log_writer=store),
        thresholds=LifecycleThresholds(
            min_impressions_per_variant=config.min_impressions_per_variant,
            min_confidence_percent=config.min_confidence_percent,
            low_performance_min_impressions=config.low_performance_min_impressions,
            low_performance_max_conversion_rate=config.low_performance_max_conversion_rate,
        ),
        lock=lock or get_cache_client(),
        max_workers=config.sweep_max_workers,
        experiment_timeout=config.sweep_experiment_timeout_seconds,
        lock_ttl=config.sweep_lock_ttl_seconds,
        default_recipients=config.notification_recipients,
    )
