"""
TaskLedger — Structured Logging System

JSON-line logging with correlation IDs and request context, shared by the
policy, billing, invitation and lifecycle engines and the FastAPI middleware.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from datetime import datetime, timezone
from enum import Enum
from collections import deque
import contextvars
import json
import os
import sys
import time
import traceback
import uuid


class LogLevel(str, Enum):
    """Log severity levels"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def numeric(self) -> int:
        levels = {"debug": 10, "info": 20, "warning": 30, "error": 40, "critical": 50}
        return levels.get(self.value, 20)


class LogCategory(str, Enum):
    """Log categories for filtering"""
    REQUEST = "request"
    RESPONSE = "response"
    DATABASE = "database"
    AUTH = "auth"
    POLICY = "policy"
    BILLING = "billing"
    INVITATION = "invitation"
    AUDIT = "audit"
    SECURITY = "security"
    PERFORMANCE = "performance"
    SYSTEM = "system"


@dataclass
class LogEntry:
    """A structured log entry"""
    id: str
    timestamp: str
    level: LogLevel
    category: LogCategory
    message: str
    service: str
    organization_id: Optional[str] = None
    correlation_id: Optional[str] = None
    request_id: Optional[str] = None
    user_id: Optional[str] = None
    duration_ms: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)
    error: Optional[Dict[str, Any]] = None
    stack_trace: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "level": self.level.value,
            "category": self.category.value,
            "message": self.message,
            "service": self.service,
            "organization_id": self.organization_id,
            "correlation_id": self.correlation_id,
            "request_id": self.request_id,
            "user_id": self.user_id,
            "duration_ms": self.duration_ms,
            "metadata": self.metadata,
            "tags": self.tags,
            "error": self.error,
            "stack_trace": self.stack_trace,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


@dataclass
class RequestContext:
    """Context for request tracing"""
    request_id: str
    correlation_id: str
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    start_time: float = field(default_factory=time.time)

    @staticmethod
    def create(
        request_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
        user_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> "RequestContext":
        rid = request_id or str(uuid.uuid4())
        return RequestContext(
            request_id=rid,
            correlation_id=correlation_id or rid,
            user_id=user_id,
            organization_id=organization_id,
        )


# Async-safe context var (works with FastAPI/asyncio)
_context_var: contextvars.ContextVar[Optional[RequestContext]] = contextvars.ContextVar(
    "request_context", default=None
)


def get_current_context() -> Optional[RequestContext]:
    return _context_var.get()


def set_current_context(context: RequestContext) -> contextvars.Token:
    return _context_var.set(context)


def reset_current_context(token: contextvars.Token) -> None:
    _context_var.reset(token)


def bind_user(user_id: str, organization_id: Optional[str]) -> None:
    """Attach the authenticated user to the active request context."""
    context = get_current_context()
    if context is not None:
        context.user_id = user_id
        context.organization_id = organization_id


class LogBuffer:
    """Bounded in-memory buffer of recent entries"""

    def __init__(self, max_size: int = 10000):
        self.max_size = max_size
        self._buffer: deque = deque(maxlen=max_size)

    def append(self, entry: LogEntry) -> None:
        self._buffer.append(entry)

    def filter(
        self,
        level: Optional[LogLevel] = None,
        category: Optional[LogCategory] = None,
        correlation_id: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[LogEntry]:
        results = []
        for entry in reversed(self._buffer):
            if level and entry.level.numeric < level.numeric:
                continue
            if category and entry.category != category:
                continue
            if correlation_id and entry.correlation_id != correlation_id:
                continue
            if user_id and entry.user_id != user_id:
                continue
            results.append(entry)
            if len(results) >= limit:
                break
        return results


class StructuredLogger:
    """Structured logger for TaskLedger"""

    def __init__(
        self,
        service_name: str = "taskledger",
        min_level: LogLevel = LogLevel.INFO,
        buffer_size: int = 10000,
        stream_output: bool = True,
    ):
        self.service_name = service_name
        self.min_level = min_level
        self.buffer = LogBuffer(buffer_size)
        self.stream_output = stream_output

    def _create_entry(
        self,
        level: LogLevel,
        category: LogCategory,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
        error: Optional[BaseException] = None,
        duration_ms: Optional[float] = None,
    ) -> LogEntry:
        context = get_current_context()

        entry = LogEntry(
            id=str(uuid.uuid4())[:12],
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            category=category,
            message=message,
            service=self.service_name,
            organization_id=context.organization_id if context else None,
            correlation_id=context.correlation_id if context else None,
            request_id=context.request_id if context else None,
            user_id=context.user_id if context else None,
            duration_ms=duration_ms,
            metadata=metadata or {},
            tags=tags or [],
        )

        if error is not None:
            entry.error = {
                "type": type(error).__name__,
                "message": str(error),
            }
            entry.stack_trace = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )

        return entry

    def _log(self, level: LogLevel, category: LogCategory, message: str, **kwargs) -> Optional[LogEntry]:
        if level.numeric < self.min_level.numeric:
            return None

        entry = self._create_entry(level, category, message, **kwargs)
        self.buffer.append(entry)

        if self.stream_output:
            out = sys.stderr if level.numeric >= LogLevel.ERROR.numeric else sys.stdout
            print(entry.to_json(), file=out)

        return entry

    def debug(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.DEBUG, category, message, **kwargs)

    def info(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.INFO, category, message, **kwargs)

    def warning(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.WARNING, category, message, **kwargs)

    def error(self, message: str, category: LogCategory = LogCategory.SYSTEM, **kwargs) -> Optional[LogEntry]:
        return self._log(LogLevel.ERROR, category, message, **kwargs)

    # Convenience methods
    def request(self, method: str, path: str, status_code: int, duration_ms: float) -> Optional[LogEntry]:
        level = LogLevel.INFO if status_code < 400 else LogLevel.WARNING if status_code < 500 else LogLevel.ERROR
        return self._log(
            level,
            LogCategory.REQUEST,
            f"{method} {path} -> {status_code}",
            duration_ms=duration_ms,
            metadata={"method": method, "path": path, "status_code": status_code},
        )

    def policy_decision(self, actor_id: str, action: str, allowed: bool, reason: Optional[str] = None) -> Optional[LogEntry]:
        metadata = {"actor_id": actor_id, "action": action, "allowed": allowed}
        if allowed:
            return self.debug(f"Policy allow: {action}", category=LogCategory.POLICY, metadata=metadata)
        metadata["reason"] = reason
        return self.info(
            f"Policy deny: {action} ({reason})",
            category=LogCategory.POLICY,
            tags=["policy", "deny"],
            metadata=metadata,
        )

    def security_event(self, event_type: str, **kwargs) -> Optional[LogEntry]:
        return self.warning(
            f"Security event: {event_type}",
            category=LogCategory.SECURITY,
            tags=["security", event_type],
            **kwargs,
        )

    def audit(self, action: str, resource: str, **kwargs) -> Optional[LogEntry]:
        return self.info(
            f"Audit: {action} on {resource}",
            category=LogCategory.AUDIT,
            tags=["audit"],
            metadata={"action": action, "resource": resource, **kwargs.pop("metadata", {})},
            **kwargs,
        )

    def performance(self, operation: str, duration_ms: float, **kwargs) -> Optional[LogEntry]:
        level = LogLevel.DEBUG if duration_ms < 1000 else LogLevel.WARNING
        return self._log(
            level,
            LogCategory.PERFORMANCE,
            f"Performance: {operation}",
            duration_ms=duration_ms,
            **kwargs,
        )

    def get_logs(
        self,
        level: Optional[LogLevel] = None,
        category: Optional[LogCategory] = None,
        correlation_id: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[LogEntry]:
        return self.buffer.filter(
            level=level,
            category=category,
            correlation_id=correlation_id,
            user_id=user_id,
            limit=limit,
        )


class TimedOperation:
    """Context manager for timing operations"""

    def __init__(
        self,
        logger: StructuredLogger,
        operation: str,
        category: LogCategory = LogCategory.PERFORMANCE,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self.logger = logger
        self.operation = operation
        self.category = category
        self.metadata = metadata or {}
        self.start_time: Optional[float] = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = (time.time() - self.start_time) * 1000
        if exc_type:
            self.logger.error(
                f"Operation failed: {self.operation}",
                category=self.category,
                duration_ms=duration_ms,
                error=exc_val,
                metadata=self.metadata,
            )
        else:
            self.logger.performance(self.operation, duration_ms=duration_ms, metadata=self.metadata)
        return False


# Global singleton
_logger: Optional[StructuredLogger] = None


def get_logger() -> StructuredLogger:
    """Get or create the global TaskLedger logger"""
    global _logger
    if _logger is None:
        _logger = StructuredLogger(
            service_name="taskledger",
            min_level=LogLevel.DEBUG if os.getenv("DEBUG") else LogLevel.INFO,
            stream_output=os.getenv("ENVIRONMENT", "development") != "test",
        )
    return _logger


# Convenience functions
def log_policy(actor_id: str, action: str, allowed: bool, reason: Optional[str] = None) -> Optional[LogEntry]:
    return get_logger().policy_decision(actor_id, action, allowed, reason)


def log_security(event_type: str, **kwargs) -> Optional[LogEntry]:
    return get_logger().security_event(event_type, **kwargs)


def log_audit(action: str, resource: str, **kwargs) -> Optional[LogEntry]:
    return get_logger().audit(action, resource, **kwargs)

