"""
Audit logging for permission lifecycle and access decisions.
"""

from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime
from typing import List, Optional
import asyncio
import json
import logging

from ..core.types import AuditEvent, ensure_utc
from ..errors import DEHRError, ErrorCode, ErrorSource, ValidationError


logger = logging.getLogger(__name__)


def _matches(event: AuditEvent, actor_id: Optional[str], event_type: Optional[str],
             start_time: Optional[datetime], end_time: Optional[datetime]) -> bool:
    if actor_id and event.actor_id != actor_id:
        return False
    if event_type and event.event_type != event_type:
        return False
    if start_time and event.timestamp < ensure_utc(start_time):
        return False
    if end_time and event.timestamp > ensure_utc(end_time):
        return False
    return True


class AuditLogger(ABC):
    """Abstract base class for audit logging"""

    @abstractmethod
    async def log(self, event: AuditEvent) -> None:
        """Log an audit event"""
        pass

    @abstractmethod
    async def get_events(
        self,
        actor_id: Optional[str] = None,
        event_type: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> List[AuditEvent]:
        """Retrieve audit events with optional filtering"""
        pass

    async def close(self) -> None:
        """Close the audit logger and release resources"""
        pass


class MemoryAuditLogger(AuditLogger):
    """In-memory audit logger for development and testing"""

    def __init__(self, max_entries: int = 1000):
        self.max_entries = max_entries
        self.events: deque = deque(maxlen=max_entries)
        self._lock = asyncio.Lock()

    async def log(self, event: AuditEvent) -> None:
        """Log an audit event to memory"""
        async with self._lock:
            self.events.append(event)

    async def get_events(
        self,
        actor_id: Optional[str] = None,
        event_type: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> List[AuditEvent]:
        """Retrieve audit events with optional filtering"""
        async with self._lock:
            return [
                event for event in self.events
                if _matches(event, actor_id, event_type, start_time, end_time)
            ]


class FileAuditLogger(AuditLogger):
    """File-based audit logger writing one JSON document per line"""

    def __init__(self, file_path: str):
        self.file_path = file_path
        self._lock = asyncio.Lock()

    async def log(self, event: AuditEvent) -> None:
        """Log an audit event to file"""
        async with self._lock:
            try:
                with open(self.file_path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(event.to_dict()) + "\n")
            except OSError as e:
                logger.error(f"Failed to write audit log {self.file_path}: {e}")
                raise DEHRError(
                    code=ErrorCode.STORAGE_ERROR,
                    message=f"Failed to write audit log: {e}",
                    source=ErrorSource.AUDIT_LOGGER,
                    cause=e,
                )

    async def get_events(
        self,
        actor_id: Optional[str] = None,
        event_type: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> List[AuditEvent]:
        """Retrieve audit events from file with optional filtering"""
        events = []

        async with self._lock:
            try:
                with open(self.file_path, "r", encoding="utf-8") as f:
                    lines = f.readlines()
            except FileNotFoundError:
                return events

        for line_number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                event = AuditEvent.from_dict(json.loads(line))
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning(f"Skipping malformed audit line {line_number} in {self.file_path}: {e}")
                continue

            if _matches(event, actor_id, event_type, start_time, end_time):
                events.append(event)

        return events


def create_audit_logger(logger_type: str = "memory", **kwargs) -> AuditLogger:
    """
    Factory function to create audit loggers

    Args:
        logger_type: Type of logger ("memory" or "file")
        **kwargs: Additional arguments for the logger

    Returns:
        AuditLogger instance
    """
    if logger_type == "memory":
        return MemoryAuditLogger(kwargs.get("max_entries", 1000))
    elif logger_type == "file":
        return FileAuditLogger(kwargs.get("file_path", "dehr-audit.log"))
    else:
        raise ValueError(f"Unknown logger type: {logger_type}")
