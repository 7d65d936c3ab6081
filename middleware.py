from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from contextvars import ContextVar

import contextlib
import logging
import uuid

# Holds the id of the current HTTP request or sweep for log correlation
request_id_context: ContextVar[str] = ContextVar("request_id", default="N/A")

logger = logging.getLogger(__name__)


def new_context_id(prefix: str = "") -> str:
    """Short unique id, readable in log lines."""
    return f"{prefix}{str(uuid.uuid4())[:8]}"


@contextlib.contextmanager
def bind_context_id(context_id: str):
    """Bind a context id for the duration of a block (used by sweeps outside HTTP)."""
    token = request_id_context.set(context_id)
    try:
        yield context_id
    finally:
        request_id_context.reset(token)


class RequestIDMiddleware(BaseHTTPMiddleware):
    @classmethod
    def request_id_context(cls):
        return request_id_context

    async def dispatch(self, request: Request, call_next):
        new_request_id = new_context_id()

        # Store the token (ContextVar token) to be used for reset later
        token = request_id_context.set(new_request_id)

        logger.debug("%s %s Request started", request.method, request.url.path)

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = new_request_id

        except Exception:
            logger.exception("Unhandled error during request processing.")
            raise

        finally:
            # Reset the context variable when the request is done
            request_id_context.reset(token)

        return response
