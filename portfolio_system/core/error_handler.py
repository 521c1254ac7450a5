#!/usr/bin/env python3
"""
ErrorHandler - Centralized exception handling for the integration layer
Degraded reads and bridge fallbacks are recorded here instead of vanishing;
write failures are recorded and then re-raised
"""

import logging
import threading
import uuid
from collections import defaultdict
from datetime import datetime
from enum import Enum
from functools import wraps
from typing import Any, Dict, List

from portfolio_system.core.errors import IntegrationError


class ErrorSeverity(Enum):
    """Error severity levels with clear action mappings"""
    CRITICAL_STOP = "critical_stop"       # Write lost or refused, caller must decide
    HIGH_DEGRADE = "high_degrade"         # Live data unavailable, serving static fallback
    MEDIUM_ALERT = "medium_alert"         # Secondary path taken (bridge -> REST)


class ErrorCategory(Enum):
    """Error categories covering the integration surfaces"""
    # Project Server REST
    PS_READ = "ps_read"                      # Projects, tasks, resources, custom fields
    PS_WRITE = "ps_write"                    # Checkout / patch / publish / queue

    # CSOM bridge
    BRIDGE_CONNECTION = "bridge"             # HTTP calls to the bridge


class ErrorHandler:
    """Centralized error handling to replace scattered try/except blocks"""

    MAX_RECENT_ERRORS = 100

    def __init__(self, debug_mode: bool = False, logger_name: str = 'portfolio_system.errors'):
        self.debug_mode = debug_mode

        self.error_counts = defaultdict(int)  # error_key -> count
        self.recent_errors: List[Dict[str, Any]] = []
        self.suppressed_errors = defaultdict(int)  # error_key -> count of suppressed
        self.last_error_time: Dict[str, datetime] = {}

        # Reads fan out over a thread pool, so bookkeeping is shared
        self._lock = threading.Lock()

        self.logger = logging.getLogger(logger_name)

    def handle_error(self,
                     error: Exception,
                     category: ErrorCategory,
                     severity: ErrorSeverity,
                     context: str = "",
                     operation: str = "",
                     suppress_duplicate_minutes: int = 0) -> bool:
        """
        Central error handling method

        Args:
            error: The exception that occurred
            category: What type of error this is
            severity: How severe this error is
            context: Additional context about what was happening
            operation: What operation was being performed
            suppress_duplicate_minutes: Suppress similar errors for this many minutes

        Returns:
            bool: True if the caller may continue (degraded), False if it must re-raise
        """
        error_key = f"{category.value}_{type(error).__name__}"
        current_time = datetime.now()

        with self._lock:
            self.error_counts[error_key] += 1

            if self._should_suppress_error(error_key, current_time, suppress_duplicate_minutes):
                self.suppressed_errors[error_key] += 1
                return severity != ErrorSeverity.CRITICAL_STOP

            self.last_error_time[error_key] = current_time
            error_message = self._format_error_message(error, category, context, operation)

            self.recent_errors.append({
                'error_id': str(uuid.uuid4()),
                'timestamp': current_time,
                'category': category.value,
                'severity': severity.value,
                'error_type': type(error).__name__,
                'message': str(error),
                'context': context,
                'operation': operation,
            })

            # Keep only recent errors
            if len(self.recent_errors) > self.MAX_RECENT_ERRORS:
                self.recent_errors.pop(0)

        self._route_error(error_message, category, severity)

        # Only critical errors propagate
        return severity != ErrorSeverity.CRITICAL_STOP

    def _should_suppress_error(self, error_key: str, current_time: datetime, suppress_minutes: int) -> bool:
        """Check if this error should be suppressed due to recent similar errors"""
        if suppress_minutes <= 0 or error_key not in self.last_error_time:
            return False

        time_since_last = (current_time - self.last_error_time[error_key]).total_seconds()
        return time_since_last < (suppress_minutes * 60)

    def _format_error_message(self, error: Exception, category: ErrorCategory,
                              context: str, operation: str) -> str:
        """Format error message consistently with all metadata"""
        base_msg = str(error)
        if len(base_msg) > 200:
            base_msg = base_msg[:200] + "..."

        if context:
            base_msg = f"{context}: {base_msg}"

        if operation:
            base_msg = f"During {operation} - {base_msg}"

        error_key = f"{category.value}_{type(error).__name__}"
        count = self.error_counts.get(error_key, 1)
        if count > 1:
            base_msg += f" (#{count})"

        suppressed_count = self.suppressed_errors.get(error_key, 0)
        if suppressed_count > 0:
            base_msg += f" [+{suppressed_count} suppressed]"
            self.suppressed_errors[error_key] = 0  # Reset after showing

        return base_msg

    def _route_error(self, message: str, category: ErrorCategory, severity: ErrorSeverity):
        """Route error to the log level matching its severity"""
        line = f"{category.value}: {message}"
        if severity == ErrorSeverity.CRITICAL_STOP:
            self.logger.error(line, exc_info=self.debug_mode)
        else:
            self.logger.warning(line)

    def get_recent_errors(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Recent errors, newest last, with JSON-safe timestamps"""
        with self._lock:
            errors = self.recent_errors[-limit:] if limit else list(self.recent_errors)
        return [{**e, 'timestamp': e['timestamp'].isoformat()} for e in errors]

    def get_error_summary(self) -> Dict[str, Any]:
        """Get summary of error patterns for the status endpoint"""
        with self._lock:
            total_errors = sum(self.error_counts.values())
            total_suppressed = sum(self.suppressed_errors.values())
            return {
                'total_errors': total_errors,
                'error_counts_by_type': dict(self.error_counts),
                'recent_error_count': len(self.recent_errors),
                'suppressed_count': total_suppressed,
                'categories_with_errors': sorted(set(e['category'] for e in self.recent_errors)),
                'most_common_errors': sorted(self.error_counts.items(), key=lambda x: x[1], reverse=True)[:5],
            }


def records_write_failures(func):
    """
    Method decorator for write use cases: record the failure on
    self.error_handler, then re-raise it unchanged.

    Caller mistakes (4xx IntegrationErrors such as ValidationError or
    NotFound) are re-raised without being recorded.
    """
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except IntegrationError as e:
            if e.status_code >= 500:
                _record_write_failure(self, e, func.__name__)
            raise
        except Exception as e:
            _record_write_failure(self, e, func.__name__)
            raise
    return wrapper


def _record_write_failure(owner, error: Exception, operation: str):
    handler = getattr(owner, "error_handler", None)
    if handler is not None:
        handler.handle_error(error, ErrorCategory.PS_WRITE, ErrorSeverity.CRITICAL_STOP, operation=operation)
