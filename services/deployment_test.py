import unittest
from unittest.mock import MagicMock
from datetime import datetime, timezone
import requests

from models.experiments import ExperimentRecord, ExperimentSettings, ExperimentStatus, VariantDescriptor
from services.deployment import WebhookDeploymentTrigger, build_handle
from services.errors import DeploymentError


class RecordingLogWriter:
    def __init__(self, calls):
        self.calls = calls

    def create_deployment_log(self, **fields):
        self.calls.append(("log", fields))


class TestWebhookDeploymentTrigger(unittest.TestCase):

    def setUp(self):
        self.calls = []
        self.session = MagicMock()
        self.session.post.side_effect = self._post
        self.response = MagicMock()
        self.experiment = ExperimentRecord(
            id=7,
            name="checkout-button",
            status=ExperimentStatus.COMPLETED,
            variants=[VariantDescriptor(id=70, name="green", config={"color": "green"})],
            metadata=ExperimentSettings(auto_deploy=True, deployment_environment="staging"),
        )
        self.winner = self.experiment.variants[0]

    def _post(self, url, **kwargs):
        self.calls.append(("post", kwargs))
        return self.response

    def trigger(self, url="https://ci.example.com/deploy", token=""):
        return WebhookDeploymentTrigger(RecordingLogWriter(self.calls), url=url, token=token, session=self.session)

    def test_log_is_written_before_the_webhook(self):
        handle = self.trigger(token="secret").deploy_winner(self.experiment, self.winner)

        self.assertEqual([c[0] for c in self.calls], ["log", "post"])
        log = self.calls[0][1]
        self.assertEqual(log["pipeline_id"], handle.pipeline_id)
        self.assertEqual(log["commit_sha"], "automated")
        self.assertEqual(log["deployed_by"], "system_automation")
        self.assertEqual(log["environment"], "staging")

        post = self.calls[1][1]
        self.assertEqual(post["headers"], {"Authorization": "Bearer secret"})
        self.assertEqual(post["json"]["winner_variant_id"], 70)
        self.assertEqual(post["json"]["winner_config"], {"color": "green"})
        self.assertEqual(post["json"]["deployment_type"], "automated_ab_test_winner")

    def test_connection_failure_raises_with_pipeline_id(self):
        self.session.post.side_effect = requests.ConnectionError("connection refused")

        with self.assertRaises(DeploymentError) as ctx:
            self.trigger().deploy_winner(self.experiment, self.winner)

        self.assertTrue(ctx.exception.pipeline_id.startswith("ab_test_7_"))
        self.assertEqual(self.calls[0][0], "log")

    def test_rejected_request_raises(self):
        self.response.raise_for_status.side_effect = requests.HTTPError("503 Server Error")
        with self.assertRaises(DeploymentError):
            self.trigger().deploy_winner(self.experiment, self.winner)

    def test_missing_webhook_url_still_records_intent(self):
        with self.assertRaises(DeploymentError):
            self.trigger(url="").deploy_winner(self.experiment, self.winner)

        self.assertEqual([c[0] for c in self.calls], ["log"])
        self.session.post.assert_not_called()


class TestBuildHandle(unittest.TestCase):

    def test_pipeline_id_uses_milliseconds(self):
        experiment = ExperimentRecord(id=3, name="e", variants=[VariantDescriptor(id=1, name="a")])
        now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

        handle = build_handle(experiment, experiment.variants[0], now)

        self.assertEqual(handle.pipeline_id, f"ab_test_3_{int(now.timestamp() * 1000)}")
        self.assertEqual(handle.environment, "production")
        self.assertEqual(handle.status, "pending")
