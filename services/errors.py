class LifecycleError(Exception):
    """Base class for errors raised while sweeping experiments."""


class MalformedExperimentError(LifecycleError):
    """The stored experiment cannot be evaluated (e.g. it has no variants)."""


class StorageError(LifecycleError):
    """A read or write against the record store failed."""


class StaleTransitionError(StorageError):
    """The experiment changed status since it was loaded, so the write was not applied."""

    def __init__(self, experiment_id: int, expected_status: str):
        super().__init__(
            f"Experiment {experiment_id} is no longer '{expected_status}', transition not applied."
        )
        self.experiment_id = experiment_id
        self.expected_status = expected_status


class DeploymentError(LifecycleError):
    """The deployment trigger rejected or could not receive the request."""

    def __init__(self, message: str, pipeline_id: str | None = None):
        super().__init__(message)
        self.pipeline_id = pipeline_id


class NotificationError(LifecycleError):
    """The notification channel failed to deliver a message."""


class AbandonedTransitionError(LifecycleError):
    """The sweep stopped waiting for this experiment, so its transition must not be written."""
