# gatekeeper/app/core/logging.py
import logging
from typing import Optional

from gatekeeper.app.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Security-relevant events (who did what, which precondition failed)
audit_logger = logging.getLogger("gatekeeper.audit")


def configure_logging(level: Optional[str] = None) -> None:
    """Install the process-wide log format. Safe to call more than once."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )


def audit(event: str, **context: object) -> None:
    """Write one audit line: event name followed by sorted key=value pairs."""
    details = " ".join(f"{key}={context[key]}" for key in sorted(context))
    audit_logger.info("%s %s", event, details)
