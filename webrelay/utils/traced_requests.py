import logging
from contextlib import contextmanager
from typing import Dict, Optional

from opentelemetry.trace import Tracer

from webrelay.utils import loggable_url, target_host

logger = logging.getLogger("uvicorn.error")


@contextmanager
def traced_request(
    tracer: Tracer,
    operation: str,
    target_url: Optional[str],
    anonymous: bool,
    start_message: str,
    extra_attrs: Optional[Dict] = None,
):
    """Context manager to create a span, set common attributes, and log a start message."""
    with tracer.start_as_current_span(operation) as span:
        span.set_attribute("proxy.mode", "anonymous" if anonymous else "identity")
        host = target_host(target_url)
        if host and not anonymous:
            span.set_attribute("proxy.target_host", host)
        if extra_attrs:
            for k, v in extra_attrs.items():
                span.set_attribute(k, v)
        logger.info(f"{start_message} {loggable_url(target_url, anonymous)}")
        yield span
