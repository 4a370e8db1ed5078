"""
Logging configuration for AIP attestation.

Provides structured JSON logging for audit trails and debugging.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Optional

# Context variable for request/correlation ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in a consistent JSON format suitable for
    log aggregation systems like ELK, Splunk, or CloudWatch.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class AuditLogger:
    """
    Specialized logger for attestation audit events.

    Records checkpoint appends, certificate issuance and every verification
    outcome so an incident can be traced back to the first broken link.
    """

    def __init__(self, name: str = "aipattest.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        """Internal logging method with extra fields."""
        extra = {
            "event_type": event_type,
            "request_id": request_id_var.get(),
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def checkpoint_appended(
        self,
        agent_id: str,
        checkpoint_id: str,
        chain_hash: str,
        position: int
    ) -> None:
        """Log a new checkpoint at the tip of an agent's chain."""
        self._log(
            logging.INFO,
            "CHECKPOINT_APPENDED",
            agent_id=agent_id,
            checkpoint_id=checkpoint_id,
            chain_hash=chain_hash,
            position=position,
            message=f"Checkpoint {checkpoint_id} appended at position {position}"
        )

    def certificate_issued(
        self,
        certificate_id: str,
        checkpoint_id: str,
        key_id: str,
        merkle_root: Optional[str] = None
    ) -> None:
        """Log certificate issuance."""
        self._log(
            logging.INFO,
            "CERTIFICATE_ISSUED",
            certificate_id=certificate_id,
            checkpoint_id=checkpoint_id,
            key_id=key_id,
            merkle_root=merkle_root,
            message=f"Certificate {certificate_id} issued for {checkpoint_id}"
        )

    def chain_verification(
        self,
        valid: bool,
        links_verified: int,
        broken_at: Optional[int] = None,
        details: str = "",
        agent_id: Optional[str] = None
    ) -> None:
        """Log a chain sequence verification outcome."""
        level = logging.INFO if valid else logging.WARNING
        self._log(
            level,
            "CHAIN_VERIFICATION",
            agent_id=agent_id,
            valid=valid,
            links_verified=links_verified,
            broken_at=broken_at,
            details=details,
            message=f"Chain verification {'passed' if valid else 'failed'}: {details}"
        )

    def certificate_verification(
        self,
        certificate_id: str,
        valid: bool,
        details: str = ""
    ) -> None:
        """Log a certificate verification outcome."""
        level = logging.INFO if valid else logging.WARNING
        self._log(
            level,
            "CERTIFICATE_VERIFICATION",
            certificate_id=certificate_id,
            valid=valid,
            details=details,
            message=f"Certificate {certificate_id} {'valid' if valid else 'INVALID'}"
        )

    def writer_contention(
        self,
        agent_id: str
    ) -> None:
        """Log a refused concurrent append on the same agent chain."""
        self._log(
            logging.WARNING,
            "WRITER_CONTENTION",
            agent_id=agent_id,
            message=f"Chain writer for {agent_id} is already held"
        )

    def security_event(
        self,
        event: str,
        severity: str = "medium",
        **details
    ) -> None:
        """Log a security-relevant event."""
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL
        }.get(severity, logging.WARNING)

        self._log(
            level,
            "SECURITY_EVENT",
            security_event=event,
            severity=severity,
            **details,
            message=f"Security event: {event}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    # stderr keeps stdout free for JSON command output
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set the request ID for the current context.

    Args:
        request_id: Request ID to set, or None to generate one

    Returns:
        The request ID that was set
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


# Global audit logger instance
audit_log = AuditLogger()
