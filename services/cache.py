import logging
import threading
from models.sweep import SweepReport
from config import config

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
SWEEP_LOCK_KEY = "lifecycle:sweep:lock"
LAST_REPORT_KEY = "lifecycle:sweep:last_report"
LAST_REPORT_TTL = 24 * 60 * 60 # keep the latest report for a day

# Deletes KEYS[1] only while it still holds ARGV[1]
RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

# --- Valkey/Redis Backend Implementations ---

class _MockValkeyBackend:
    """Simulates the low-level Valkey/Redis client (in-memory, single process)."""
    def __init__(self):
        self._cache = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        logger.debug("cache mock get: %s", key)
        return self._cache.get(key)

    def set(self, key: str, value: str, ex: int, nx: bool = False) -> bool | None:
        # Expiration is not simulated, mirrors redis-py return values otherwise
        with self._lock:
            if nx and key in self._cache:
                return None
            logger.debug("cache mock set: %s", key)
            self._cache[key] = value
            return True

    def delete_if_equals(self, key: str, value: str) -> bool:
        with self._lock:
            if self._cache.get(key) != value:
                return False
            del self._cache[key]
            return True

class RealValkeyBackend:
    """Real implementation using redis-py client (compatible with Valkey)."""
    def __init__(self, host: str, port: int, db: int = 0, password: str | None = None):
        try:
            import redis
        except ImportError:
            logger.error("Redis module not found. Install it with `pip install redis`.")
            raise

        try:
            self.client = redis.Redis(
                host=host,
                port=port,
                db=db,
                password=password,
                decode_responses=True,
                socket_timeout=2.0
            )
            self.client.ping()
        except Exception as e:
            logger.error("Failed to connect to Valkey/Redis: %s", e)
            raise

    def get(self, key: str) -> str | None:
        try:
            logger.debug("cache valkey get: %s", key)
            return self.client.get(key)
        except Exception as e:
            logger.error("Valkey GET error for key %s: %s", key, e)
            return None

    def set(self, key: str, value: str, ex: int, nx: bool = False) -> bool | None:
        try:
            logger.debug("cache valkey set: %s", key)
            return self.client.set(key, value, ex=ex, nx=nx)
        except Exception as e:
            logger.error("Valkey SET error for key %s: %s", key, e)
            return None

    def delete_if_equals(self, key: str, value: str) -> bool:
        try:
            return bool(self.client.eval(RELEASE_LOCK_SCRIPT, 1, key, value))
        except Exception as e:
            logger.error("Valkey EVAL error for key %s: %s", key, e)
            return False


# --- Dedicated Cache Client Class ---

class CacheClient:
    """High-level client for the sweep lock and the latest sweep report."""

    def __init__(self, backend):
        self.backend = backend
        logger.debug("CacheClient backend: %s", self.backend)

    # --- Sweep lock ---

    def acquire_sweep_lock(self, token: str, ttl: int) -> bool:
        """
        Take the sweep lock with SET NX EX. The TTL frees the lock if the
        holder dies, so a crashed sweep blocks the schedule for at most `ttl`.
        """
        acquired = bool(self.backend.set(SWEEP_LOCK_KEY, token, ex=ttl, nx=True))
        if not acquired:
            logger.info("sweep lock held by %s", self.backend.get(SWEEP_LOCK_KEY))
        return acquired

    def release_sweep_lock(self, token: str) -> None:
        # Only the holder may release; a lock that expired and was re-taken stays
        if not self.backend.delete_if_equals(SWEEP_LOCK_KEY, token):
            logger.warning("sweep lock no longer held by %s", token)

    # --- Sweep report ---

    def set_last_report(self, report: SweepReport) -> None:
        self.backend.set(LAST_REPORT_KEY, report.model_dump_json(), ex=LAST_REPORT_TTL)
        logger.debug("sweep report %s cached.", report.sweep_id)

    def get_last_report(self) -> SweepReport | None:
        json_str = self.backend.get(LAST_REPORT_KEY)
        if json_str:
            return SweepReport.model_validate_json(json_str)
        return None

# --- Initialize Backend and Default Client ---
valkey_host = config.valkey_host
valkey_port = config.valkey_port

logger.info("valkey_host: %s, port: %d", valkey_host, valkey_port)

if valkey_host:
    try:
        VALKEY_BACKEND = RealValkeyBackend(host=valkey_host, port=valkey_port)
    except Exception:
        logger.info("Falling back to Mock Valkey Backend due to connection failure.")
        VALKEY_BACKEND = _MockValkeyBackend()
else:
    logger.info("VALKEY_HOST not set. Using Mock Valkey Backend.")
    VALKEY_BACKEND = _MockValkeyBackend()

# Initialize a default client (singleton)
_DEFAULT_CACHE_CLIENT = CacheClient(backend=VALKEY_BACKEND)

def get_cache_client():
    return _DEFAULT_CACHE_CLIENT

def get_mock_cache_client():
    return CacheClient(backend=_MockValkeyBackend())
