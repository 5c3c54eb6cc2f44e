"""
Analytics events emitted by the access service.

Events never carry a PIN; `pin_attempt` only reports the PIN's format and
the outcome.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)

BUCKET_CREATE = "bucket_create"
BUCKET_DELETE = "bucket_delete"
FILE_UPLOAD = "file_upload"
FILE_DOWNLOAD = "file_download"
PIN_ACCESS = "pin_access"
PIN_ATTEMPT = "pin_attempt"


class AnalyticsSink(ABC):

    @abstractmethod
    def log_event(self, name: str, params: Optional[Dict[str, Any]] = None) -> None:
        ...

    def emit(self, name: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Send an event; a failing sink never breaks the caller."""
        try:
            self.log_event(name, params or {})
        except Exception as e:
            logger.warning(f"Analytics event {name} dropped: {e}")


class LoggingAnalyticsSink(AnalyticsSink):
    """Writes events to the `pindrop.analytics` logger."""

    def __init__(self, logger_name: str = "pindrop.analytics"):
        self._logger = logging.getLogger(logger_name)

    def log_event(self, name: str, params: Optional[Dict[str, Any]] = None) -> None:
        self._logger.info(f"{name} {params or {}}")


class NullAnalyticsSink(AnalyticsSink):

    def log_event(self, name: str, params: Optional[Dict[str, Any]] = None) -> None:
        return None
