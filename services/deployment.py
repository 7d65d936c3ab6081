from datetime import datetime, timezone
from typing import Protocol
from config import config
from models.experiments import ExperimentRecord, VariantDescriptor
from models.sweep import DeploymentHandle
from services.errors import DeploymentError
import logging
import requests

logger = logging.getLogger(__name__)


class DeploymentTrigger(Protocol):
    def deploy_winner(self, experiment: ExperimentRecord, winner: VariantDescriptor) -> DeploymentHandle: ...


class DeploymentLogWriter(Protocol):
    def create_deployment_log(self, **fields) -> None: ...


def build_handle(experiment: ExperimentRecord, winner: VariantDescriptor, now: datetime | None = None) -> DeploymentHandle:
    now = now or datetime.now(timezone.utc)
    return DeploymentHandle(
        pipeline_id=f"ab_test_{experiment.id}_{int(now.timestamp() * 1000)}",
        experiment_id=experiment.id,
        experiment_name=experiment.name,
        winner_variant_id=winner.id,
        winner_variant_name=winner.name,
        winner_config=winner.config,
        environment=experiment.metadata.deployment_environment or "production",
        triggered_at=now,
    )


class WebhookDeploymentTrigger:
    """
    Records a deployment log entry and then calls the CI/CD webhook.

    The log entry is written before the downstream call so the intent to deploy
    is kept even when the pipeline rejects the request.
    """

    def __init__(
        self,
        log_writer: DeploymentLogWriter,
        url: str,
        token: str = "",
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ):
        self.log_writer = log_writer
        self.url = url
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def record_intent(self, handle: DeploymentHandle) -> None:
        self.log_writer.create_deployment_log(
            pipeline_id=handle.pipeline_id,
            experiment_id=handle.experiment_id,
            commit_sha="automated",
            commit_message=f"Deploy A/B test winner: {handle.experiment_name} - {handle.winner_variant_name}",
            branch="main",
            environment=handle.environment,
            status="pending",
            deployed_by="system_automation",
            started_at=handle.triggered_at,
        )

    def deploy_winner(self, experiment: ExperimentRecord, winner: VariantDescriptor) -> DeploymentHandle:
        handle = build_handle(experiment, winner)
        self.record_intent(handle)

        if not self.url:
            raise DeploymentError("DEPLOY_WEBHOOK_URL not configured", pipeline_id=handle.pipeline_id)

        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            resp = self.session.post(
                self.url,
                json=handle.model_dump(mode="json"),
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise DeploymentError(f"deployment webhook rejected {handle.pipeline_id}: {e}", pipeline_id=handle.pipeline_id) from e

        logger.info("deployment %s triggered for experiment %d (winner %s, env %s)",
                    handle.pipeline_id, experiment.id, winner.name, handle.environment)
        return handle


def get_deployment_trigger(log_writer: DeploymentLogWriter) -> DeploymentTrigger:
    return WebhookDeploymentTrigger(
        log_writer=log_writer,
        url=config.deploy_webhook_url,
        token=config.deploy_webhook_token,
        timeout=config.http_timeout_seconds,
    )
