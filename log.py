import logging
import sys
from middleware import RequestIDMiddleware

class ContextualFilter(logging.Filter):
    """A logging filter that injects the request (or sweep) ID from ContextVar."""
    def filter(self, record: logging.LogRecord) -> bool:
        # HTTP requests set this in the middleware, sweeps set it to their sweep id
        record.request_id = RequestIDMiddleware.request_id_context().get()
        return True

def setup_logging(log_level: str = "INFO", log_filename: str = "lifecycle_controller.log"):
    log_filter = ContextualFilter()

    # The format must include the custom 'request_id' attribute
    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - [%(request_id)s] - %(name)s - %(message)s'
    )

    stream_handler = logging.StreamHandler(sys.stdout)
    handlers = [stream_handler]

    # An empty filename disables the file handler (containers log to stdout only)
    if log_filename:
        handlers.append(logging.FileHandler(log_filename, mode='a'))

    for handler in handlers:
        handler.addFilter(log_filter)
        handler.setFormatter(formatter)

    logging.basicConfig(level=logging.getLevelName(log_level.upper()), handlers=handlers)
