"""
Error Handler - Centralized error handling and conflict retry for reconcilers

Classifies and records reconcile failures, and provides the read-modify-write
retry loop used for every status write against the optimistic-concurrency
store.
"""
import time
import random
import logging
import threading
from typing import Optional, Callable, Any, Dict, List, TypeVar
from enum import Enum
from dataclasses import dataclass

from ..errors import ConflictError

logging.basicConfig(format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s', level=logging.INFO, force=True)
logger = logging.getLogger(__name__)

T = TypeVar('T')


class ErrorSeverity(Enum):
    """Severity levels for errors"""
    LOW = "low"  # Logged, pass continues
    MEDIUM = "medium"  # Partial progress, retried next trigger
    HIGH = "high"  # Pass aborted
    FATAL = "fatal"  # Process bootstrap failure


class ErrorCategory(Enum):
    """Categories of reconcile errors for targeted handling"""
    SELECTOR_RESOLUTION = "selector_resolution"
    CHAOS_ACTION = "chaos_action"
    MALFORMED_SPEC = "malformed_spec"
    CHILD_CREATION = "child_creation"
    STATUS_UPDATE = "status_update"
    CONFIGURATION = "configuration"


@dataclass
class ErrorContext:
    """Context information for an error"""
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    exception: Optional[Exception] = None
    component: Optional[str] = None
    object_key: Optional[str] = None
    record_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class RetryConfig:
    """Configuration for retry behavior"""
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True


# Short, flat retry for status writes on contended objects
DEFAULT_RETRY = RetryConfig(max_attempts=5, initial_delay=0.01, max_delay=1.0, exponential_base=1.0, jitter=True)

# Fewer attempts with a steep backoff for per-experiment record writes
DEFAULT_BACKOFF = RetryConfig(max_attempts=4, initial_delay=0.01, max_delay=1.0, exponential_base=5.0, jitter=True)


def backoff_delay(config: RetryConfig, attempt: int) -> float:
    delay = min(config.initial_delay * (config.exponential_base ** attempt), config.max_delay)
    if config.jitter:
        delay *= (0.5 + random.random())
    return delay


def retry_on_conflict(operation: Callable[[], T], config: RetryConfig = DEFAULT_RETRY,
                      operation_name: str = "update") -> T:
    """
    Run a read-modify-write operation, re-running it whenever the write hits
    a stale resource version.

    The operation must fetch the latest object itself on each attempt. Only
    ConflictError is retried; any other error (including NotFoundError)
    propagates immediately. When the attempts run out the last ConflictError
    is raised.
    """
    last_conflict = None
    for attempt in range(config.max_attempts):
        try:
            return operation()
        except ConflictError as e:
            last_conflict = e
            if attempt < config.max_attempts - 1:
                delay = backoff_delay(config, attempt)
                logger.debug(f"{operation_name} conflicted (attempt {attempt + 1}/{config.max_attempts}), "
                             f"retrying in {delay:.3f}s")
                time.sleep(delay)

    logger.warning(f"{operation_name} still conflicting after {config.max_attempts} attempts")
    raise last_conflict


class ErrorHandler:
    """
    Centralized error reporting for reconcilers.

    Every failure a reconciler survives or re-raises is logged at the level
    its severity calls for and kept in a bounded history, so one pass can be
    inspected after the fact.
    """

    def __init__(self, max_history: int = 1000):
        self.error_history: List[ErrorContext] = []
        self.max_history = max_history
        self._history_lock = threading.Lock()

    def handle_error(self, error_context: ErrorContext) -> None:
        """Log an error and add it to the history"""
        self._log_error(error_context)
        self._remember(error_context)

    def _remember(self, error_context: ErrorContext):
        with self._history_lock:
            self.error_history.append(error_context)
            if len(self.error_history) > self.max_history:
                del self.error_history[:len(self.error_history) - self.max_history]

    def retry_with_backoff(
        self,
        operation: Callable,
        config: RetryConfig,
        error_category: ErrorCategory,
        operation_name: str = "operation",
        **kwargs
    ) -> tuple:
        """Execute an operation with retry logic and exponential backoff"""
        last_exception = None

        for attempt in range(config.max_attempts):
            try:
                result = operation(**kwargs)
                if attempt > 0:
                    logger.info(f"{operation_name} succeeded on attempt {attempt + 1}")
                return True, result

            except Exception as e:
                last_exception = e
                logger.warning(f"{operation_name} failed on attempt {attempt + 1}: {e}")

                if attempt < config.max_attempts - 1:
                    delay = backoff_delay(config, attempt)
                    logger.info(f"Retrying in {delay:.2f} seconds...")
                    time.sleep(delay)

        self.handle_error(ErrorContext(
            category=error_category,
            severity=ErrorSeverity.FATAL,
            message=f"{operation_name} failed after {config.max_attempts} attempts: {last_exception}",
            exception=last_exception,
        ))
        return False, None

    def _log_error(self, error_context: ErrorContext):
        """Log error with appropriate level based on severity"""
        log_message = f"[{error_context.category.value}] {error_context.message}"

        if error_context.component:
            log_message = f"[{error_context.component}] {log_message}"

        if error_context.object_key:
            log_message += f" (object: {error_context.object_key})"

        if error_context.record_id:
            log_message += f" (record: {error_context.record_id})"

        if error_context.severity == ErrorSeverity.FATAL:
            logger.critical(log_message)
        elif error_context.severity == ErrorSeverity.HIGH:
            logger.error(log_message)
        elif error_context.severity == ErrorSeverity.MEDIUM:
            logger.warning(log_message)
        else:
            logger.info(log_message)

    def errors_for(self, object_key: str) -> List[ErrorContext]:
        """Errors recorded against one object, oldest first"""
        with self._history_lock:
            return [error for error in self.error_history if error.object_key == object_key]


# Global error handler instance
_error_handler = None


def get_error_handler() -> ErrorHandler:
    """Get the global error handler instance"""
    global _error_handler
    if _error_handler is None:
        _error_handler = ErrorHandler()
    return _error_handler
