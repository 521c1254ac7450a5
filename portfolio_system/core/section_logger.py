from enum import Enum
import logging
import os
from datetime import datetime
from typing import Optional, Dict, Any


class LogSection(Enum):
    PROJECT_SERVER = "PS"
    BRIDGE = "BRIDGE"
    AUTOMATION = "AUTO"
    CACHE = "CACHE"
    WRITE_BACK = "WRITE"
    SYSTEM_HEALTH = "HEALTH"


class SectionLogger:
    def __init__(self, section: LogSection, log_dir: Optional[str] = None):
        self.section = section
        self.logger = logging.getLogger(f"portfolio_system.{section.value.lower()}")

        # Section file only when a log directory is configured
        log_dir = log_dir or os.getenv('LOG_DIR')
        if log_dir and not any(isinstance(h, logging.FileHandler) for h in self.logger.handlers):
            os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(os.path.join(log_dir, f'{section.value.lower()}_errors.log'))
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            ))
            self.logger.addHandler(file_handler)

    def _record_id(self, code: str) -> str:
        # codes already carry the section prefix (PS-001); keep ids readable
        if code.startswith(f"{self.section.value}-"):
            code = code[len(self.section.value) + 1:]
        return f"{self.section.value}-{code}-{datetime.now().strftime('%Y%m%d%H%M%S')}"

    def log_error(self, error_code: str, message: str, context: Optional[Dict[str, Any]] = None,
                  exc_info: bool = False) -> str:
        """Log an error with section-specific context"""
        error_id = self._record_id(error_code)
        self.logger.error(f"{error_id}: {message}", exc_info=exc_info)
        if context:
            self.logger.error(f"Context: {context}")
        return error_id

    def log_warning(self, warning_code: str, message: str, context: Optional[Dict[str, Any]] = None) -> str:
        """Log a warning with section-specific context"""
        warning_id = self._record_id(warning_code)
        self.logger.warning(f"{warning_id}: {message}")
        if context:
            self.logger.warning(f"Context: {context}")
        return warning_id

    def log_info(self, info_code: str, message: str, context: Optional[Dict[str, Any]] = None) -> str:
        """Log an info message with section-specific context"""
        info_id = self._record_id(info_code)
        self.logger.info(f"{info_id}: {message}")
        if context:
            self.logger.info(f"Context: {context}")
        return info_id


# Section-specific loggers
ps_logger = SectionLogger(LogSection.PROJECT_SERVER)
bridge_logger = SectionLogger(LogSection.BRIDGE)
automation_logger = SectionLogger(LogSection.AUTOMATION)
cache_logger = SectionLogger(LogSection.CACHE)
write_logger = SectionLogger(LogSection.WRITE_BACK)
health_logger = SectionLogger(LogSection.SYSTEM_HEALTH)


# Error code constants
class ErrorCodes:
    # Project Server REST
    PS_REQUEST = "PS-001"
    PS_READ_FAILED = "PS-002"
    PS_DIGEST_FAILED = "PS-003"
    PS_CONNECTION_OK = "PS-004"
    PS_CONNECTION_FAILED = "PS-005"

    # Write workflow
    WRITE_CHECKOUT = "WRITE-001"
    WRITE_PATCH = "WRITE-002"
    WRITE_PUBLISH = "WRITE-003"
    WRITE_QUEUE_SETTLED = "WRITE-004"
    WRITE_QUEUE_TIMEOUT = "WRITE-005"
    WRITE_ASSIGNMENT = "WRITE-007"

    # Bridge (HTTP)
    BRIDGE_CALL = "BRIDGE-001"
    BRIDGE_HTTP_ERROR = "BRIDGE-002"
    BRIDGE_TIMEOUT = "BRIDGE-003"
    BRIDGE_FALLBACK = "BRIDGE-004"
    BRIDGE_STARTUP = "BRIDGE-005"

    # Automation process
    AUTO_RUN = "AUTO-001"
    AUTO_STDERR = "AUTO-002"
    AUTO_REPORTED_FAILURE = "AUTO-003"
    AUTO_INVALID_OUTPUT = "AUTO-004"
    AUTO_TIMEOUT = "AUTO-005"

    # Cache / data service
    CACHE_POPULATED = "CACHE-002"
    CACHE_FALLBACK = "CACHE-003"
    CACHE_INVALIDATED = "CACHE-004"

    # System health
    HEALTH_SERVICE_DOWN = "HEALTH-002"
