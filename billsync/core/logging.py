"""The logging configuration module.

Webhook processing logs carry dimensions such as `provider`, `event_id`,
`event_type`, `account_id` and, on failures, `error_class`. They are bound once with
`with_context` and then travel with every record:

```python
log = logger.with_context(provider="stripe", event_id="evt_1")
log.with_context(account_id="acct_42").info("Account moved active -> past_due")
```

Deployed environments get one JSON object per line with the dimensions as top-level
keys, so alerts can filter on e.g. `error_class == "infrastructure"`. Local
development gets plain text with the dimensions appended in brackets.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

DIMENSIONS_ATTR = "dimensions"


def _dimensions_of(record: logging.LogRecord) -> dict[str, Any]:
    return getattr(record, DIMENSIONS_ATTR, None) or {}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, dimensions flattened into the top level."""

    def __init__(self, service: str, environment: str):
        """Initialize the formatter.

        Args:
        ----
            service (str): Service name stamped on every record.
            environment (str): Deployment environment stamped on every record.

        """
        super().__init__()
        self.service = service
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON.

        Args:
        ----
            record (logging.LogRecord): The log record to format

        Returns:
        -------
            str: JSON-formatted log message

        """
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service,
            "environment": self.environment,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        for key, value in _dimensions_of(record).items():
            # Dimensions never overwrite the envelope
            entry.setdefault(key, value)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable format for local development."""

    def __init__(self) -> None:
        """Initialize the formatter."""
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        """Format the record, appending its dimensions."""
        text = super().format(record)
        dimensions = _dimensions_of(record)
        if not dimensions:
            return text
        rendered = " ".join(f"{key}={value}" for key, value in dimensions.items())
        return f"{text} [{rendered}]"


class ContextualLogger(logging.LoggerAdapter):
    """A LoggerAdapter that attaches bound dimensions to every record."""

    def __init__(self, logger: logging.Logger, dimensions: Optional[dict] = None) -> None:
        """Initialize the contextual logger.

        Args:
        ----
            logger (logging.Logger): Base logger instance
            dimensions (Optional[dict]): Dimensions for structured logging

        """
        super().__init__(logger, {})
        self.dimensions = dimensions or {}

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        """Merge the bound dimensions into the record's `extra`."""
        extra = kwargs.setdefault("extra", {})
        extra[DIMENSIONS_ATTR] = {**self.dimensions, **extra.get(DIMENSIONS_ATTR, {})}
        return msg, kwargs

    def with_context(self, **dimensions: str | int | float | bool | None) -> "ContextualLogger":
        """Create a new logger with additional dimensions.

        Dimensions set to None are dropped, so optional values (an account that was
        not resolved, for instance) can be passed without checks.

        Args:
        ----
            dimensions: Keyword arguments to add to dimensions

        Returns:
        -------
            ContextualLogger: New logger instance with updated dimensions

        """
        merged = {**self.dimensions}
        for key, value in dimensions.items():
            if value is None:
                merged.pop(key, None)
            else:
                merged[key] = value
        return ContextualLogger(self.logger, merged)


class LoggerConfigurator:
    """Configures the service's loggers from settings.

    Configuration:
    -------------
    Uses settings from billsync.core.config:
    - Text format when LOCAL_DEVELOPMENT=True, JSON format otherwise
    - LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    @staticmethod
    def configure_logger(name: str, dimensions: Optional[dict] = None) -> ContextualLogger:
        """Configure and return a logger with the given name and initial dimensions.

        Args:
        ----
            name (str): Logger name
            dimensions (Optional[dict]): Initial dimensions

        Returns:
        -------
            ContextualLogger: Configured logger with context support

        """
        # Import settings here to avoid circular imports
        from billsync.core.config import settings

        base = logging.getLogger(name)
        base.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

        if not getattr(base, "_billsync_configured", False):
            handler = logging.StreamHandler(sys.stdout)
            if settings.LOCAL_DEVELOPMENT:
                handler.setFormatter(TextFormatter())
            else:
                handler.setFormatter(JSONFormatter(settings.PROJECT_NAME, settings.ENVIRONMENT))
            base.handlers.clear()
            base.addHandler(handler)
            # Records would be printed twice through the root logger otherwise
            base.propagate = False
            base._billsync_configured = True

        return ContextualLogger(base, dimensions)


# Default logger instance
logger = LoggerConfigurator.configure_logger("billsync")
