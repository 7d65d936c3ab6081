import os
import log
from dotenv import load_dotenv

# Load .env file into environment
load_dotenv()


def _split_list(value: str | None) -> list[str]:
    """Parse a comma separated env value into a list, dropping blanks."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    def __init__(self):
        self.valkey_host = os.getenv("VALKEY_HOST", "")
        self.valkey_port = int(os.getenv("VALKEY_PORT", 6379))
        self.database_url = os.getenv("DATABASE_URL", "sqlite:///./lifecycle.db")
        self.log_level = os.getenv("LOG_LEVEL", default="INFO")
        self.log_file = os.getenv("LOG_FILE", default="lifecycle_controller.log")
        self.valid_tokens = _split_list(os.getenv("VALID_TOKENS"))
        self.celery_broker_url = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1" )
        self.celery_backend_url = os.getenv("CELERY_BACKEND_URL", "redis://localhost:6379/1" )

        # Sweep scheduling and worker pool
        self.sweep_interval_seconds = int(os.getenv("SWEEP_INTERVAL_SECONDS", 300))
        self.sweep_max_workers = int(os.getenv("SWEEP_MAX_WORKERS", 4))
        self.sweep_experiment_timeout_seconds = float(os.getenv("SWEEP_EXPERIMENT_TIMEOUT_SECONDS", 60))
        self.sweep_lock_ttl_seconds = int(os.getenv("SWEEP_LOCK_TTL_SECONDS", 600))

        # Lifecycle thresholds (defaults, experiments may override some of them)
        self.min_impressions_per_variant = int(os.getenv("MIN_IMPRESSIONS_PER_VARIANT", 100))
        self.min_confidence_percent = float(os.getenv("MIN_CONFIDENCE_PERCENT", 95.0))
        self.low_performance_min_impressions = int(os.getenv("LOW_PERFORMANCE_MIN_IMPRESSIONS", 500))
        self.low_performance_max_conversion_rate = float(os.getenv("LOW_PERFORMANCE_MAX_CONVERSION_RATE", 0.01))

        # Collaborators
        self.notification_webhook_url = os.getenv("NOTIFICATION_WEBHOOK_URL", "")
        self.notification_recipients = _split_list(os.getenv("NOTIFICATION_RECIPIENTS"))
        self.deploy_webhook_url = os.getenv("DEPLOY_WEBHOOK_URL", "")
        self.deploy_webhook_token = os.getenv("DEPLOY_WEBHOOK_TOKEN", "")
        self.http_timeout_seconds = float(os.getenv("HTTP_TIMEOUT_SECONDS", 10))

        # Call setup_logging when the application starts
        log.setup_logging(self.log_level, self.log_file)

    def __repr__(self):
        return (
            f"<Settings db={self.database_url} valkey={self.valkey_host}:{self.valkey_port} "
            f"loglevel={self.log_level}, broker_url:{self.celery_broker_url}, "
            f"sweep_interval:{self.sweep_interval_seconds}s, workers:{self.sweep_max_workers}>"
        )

config = Config()
