"""Logging configuration and setup."""

import logging
import logging.handlers
import json
from typing import Dict, Any, Optional
from datetime import datetime, timezone
from gitops_broker.config import config


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        # Add extra fields if present
        if hasattr(record, 'instance_id'):
            log_entry['instance_id'] = record.instance_id
        if hasattr(record, 'operation'):
            log_entry['operation'] = record.operation
        if hasattr(record, 'commit'):
            log_entry['commit'] = record.commit

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


class AuditLogger:
    """Specialized logger for the broker audit trail."""

    def __init__(self):
        self.logger = logging.getLogger('gitops_broker.audit')

    def log_operation(self, instance_id: str, operation: str,
                      commit: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        """Log a broker operation against a service instance."""
        extra = {
            'instance_id': instance_id,
            'operation': operation,
            'commit': commit or 'none'
        }

        message = f"Broker operation: {operation} for instance {instance_id}"
        if details:
            message += f" - Details: {json.dumps(details, default=str)}"

        self.logger.info(message, extra=extra)

    def log_failure(self, instance_id: str, operation: str, error: Exception):
        """Log a broker operation that did not complete."""
        extra = {
            'instance_id': instance_id,
            'operation': operation
        }
        self.logger.error(
            f"Broker operation failed: {operation} for instance {instance_id}: {error}",
            extra=extra
        )


def setup_logging(level: Optional[str] = None, structured: bool = True):
    """Set up logging configuration.

    Args:
        level: Overrides LOG_LEVEL
        structured: JSON lines for the server; plain text (LoggingConfig.format)
            for interactive CLI use
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, (level or config.logging.level).upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    if structured:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(logging.Formatter(config.logging.format))
    root_logger.addHandler(console_handler)

    # The audit trail always goes to the file as JSON
    if config.logging.file_path:
        file_handler = logging.handlers.RotatingFileHandler(
            config.logging.file_path,
            maxBytes=config.logging.max_file_size,
            backupCount=config.logging.backup_count
        )
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    # GitPython logs every command at DEBUG
    logging.getLogger('git').setLevel(logging.WARNING)
    logging.getLogger('werkzeug').setLevel(logging.WARNING)


# Initialize audit logger
audit_logger = AuditLogger()
