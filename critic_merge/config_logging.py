"""
CriticMerge Configuration & Logging Module
==========================================
Centralized configuration, structured logging, and error types.

Version: 1.0.0
"""

import os
import sys
import json
import logging
import uuid
import time
import functools
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable, Tuple, List
from pathlib import Path
from dataclasses import dataclass, field
from contextlib import contextmanager
import threading

__version__ = "1.0.0"

# =============================================================================
# CONFIGURATION CONSTANTS
# =============================================================================
DEFAULT_DIFF_MAX_CELLS = 1_000_000    # LCS table cap before falling back to diff-match-patch
DEFAULT_DIFF_TIMEOUT = 2.0            # Seconds per diff-match-patch diff
DEFAULT_PROTECTED_BONUS = 1           # Extra alignment score for protected tokens
DEFAULT_MAX_MARKER_DEPTH = 32         # Deepest marker nesting the parser accepts
DEFAULT_MAX_WORKERS = 4               # Reviewer extraction fan-out
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024  # 5MB max per log file
LOG_BACKUP_COUNT = 5                  # Number of log backup files to keep

VALID_GRANULARITIES = ('word', 'sentence')


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == 'true'


# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================

@dataclass
class MergeConfig:
    """Engine and application configuration."""

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # Options: json, text
    log_to_file: bool = False
    log_to_console: bool = True
    log_dir: Path = field(default_factory=lambda: Path.cwd() / 'logs')

    # Diff engine
    granularity: str = "word"  # Options: word, sentence
    diff_max_cells: int = DEFAULT_DIFF_MAX_CELLS
    diff_timeout: float = DEFAULT_DIFF_TIMEOUT
    protected_bonus: int = DEFAULT_PROTECTED_BONUS

    # Annotation model
    author_prefix_limit: int = 30
    caption_length_limit: int = 200
    max_marker_depth: int = DEFAULT_MAX_MARKER_DEPTH
    context_chars: int = 50

    # Merge
    max_workers: int = DEFAULT_MAX_WORKERS
    snapshot_path: Path = field(default_factory=lambda: Path('.rev') / 'conflicts.json')

    # Comment anchors
    fuzzy_threshold: float = 0.5
    fuzzy_min_length: int = 8

    # Import
    keep_protected_source: bool = True

    def __post_init__(self):
        """Normalize path fields and prepare the log directory."""
        self.log_dir = Path(self.log_dir)
        self.snapshot_path = Path(self.snapshot_path)
        if self.log_to_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls) -> 'MergeConfig':
        """Load configuration from environment variables."""
        return cls(
            log_level=os.environ.get('CRM_LOG_LEVEL', 'INFO'),
            log_format=os.environ.get('CRM_LOG_FORMAT', 'json'),
            log_to_file=_env_bool('CRM_LOG_TO_FILE', 'false'),
            log_to_console=_env_bool('CRM_LOG_TO_CONSOLE', 'true'),
            log_dir=Path(os.environ.get('CRM_LOG_DIR', str(Path.cwd() / 'logs'))),
            granularity=os.environ.get('CRM_GRANULARITY', 'word'),
            diff_max_cells=int(os.environ.get('CRM_DIFF_MAX_CELLS', str(DEFAULT_DIFF_MAX_CELLS))),
            diff_timeout=float(os.environ.get('CRM_DIFF_TIMEOUT', str(DEFAULT_DIFF_TIMEOUT))),
            protected_bonus=int(os.environ.get('CRM_PROTECTED_BONUS', str(DEFAULT_PROTECTED_BONUS))),
            max_marker_depth=int(os.environ.get('CRM_MAX_MARKER_DEPTH', str(DEFAULT_MAX_MARKER_DEPTH))),
            max_workers=int(os.environ.get('CRM_MAX_WORKERS', str(DEFAULT_MAX_WORKERS))),
            snapshot_path=Path(os.environ.get('CRM_SNAPSHOT_PATH', '.rev/conflicts.json')),
            fuzzy_threshold=float(os.environ.get('CRM_FUZZY_THRESHOLD', '0.5')),
            keep_protected_source=_env_bool('CRM_KEEP_PROTECTED_SOURCE', 'true'),
        )

    def validate(self) -> Tuple[bool, List[str]]:
        """Validate configuration and return (is_valid, errors)."""
        errors = []

        if self.granularity not in VALID_GRANULARITIES:
            errors.append(f"Invalid granularity: {self.granularity}. Must be one of {VALID_GRANULARITIES}")

        if self.diff_max_cells < 1:
            errors.append("diff_max_cells must be positive")

        if self.diff_timeout < 0:
            errors.append("diff_timeout cannot be negative")

        if self.protected_bonus < 0:
            errors.append("protected_bonus cannot be negative")

        if not 0.0 <= self.fuzzy_threshold <= 1.0:
            errors.append("fuzzy_threshold must be between 0.0 and 1.0")

        if self.max_workers < 1:
            errors.append("max_workers must be at least 1")

        if self.max_marker_depth < 1:
            errors.append("max_marker_depth must be at least 1")

        if self.log_format not in ('json', 'text'):
            errors.append(f"Invalid log_format: {self.log_format}. Must be 'json' or 'text'")

        return (len(errors) == 0, errors)


# Global config instance
_config: Optional[MergeConfig] = None


def get_config() -> MergeConfig:
    """Get or create the global configuration."""
    global _config
    if _config is None:
        _config = MergeConfig.from_env()
    return _config


def reset_config():
    """Reset the global configuration (for testing)."""
    global _config
    _config = None


# =============================================================================
# STRUCTURED LOGGING
# =============================================================================

class StructuredLogger:
    """Thread-safe structured JSON logger with correlation IDs."""

    _local = threading.local()

    def __init__(self, name: str, config: Optional[MergeConfig] = None):
        self.name = name
        self.config = config or get_config()
        self._setup_logger()

    def _setup_logger(self):
        """Configure the underlying Python logger."""
        self.logger = logging.getLogger(self.name)
        self.logger.setLevel(getattr(logging, self.config.log_level.upper(), logging.INFO))
        self.logger.handlers.clear()

        if self.config.log_format == 'json':
            formatter = JsonFormatter()
        else:
            formatter = logging.Formatter(
                '%(asctime)s [%(levelname)s] %(name)s - %(message)s'
            )

        if self.config.log_to_console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)

        if self.config.log_to_file:
            from logging.handlers import RotatingFileHandler
            log_file = self.config.log_dir / f"{self.name.lower()}.log"
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=LOG_FILE_MAX_BYTES,
                backupCount=LOG_BACKUP_COUNT,
                encoding='utf-8'
            )
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

    @classmethod
    def set_correlation_id(cls, correlation_id: str):
        """Set correlation ID for current thread."""
        cls._local.correlation_id = correlation_id

    @classmethod
    def get_correlation_id(cls) -> str:
        """Get correlation ID for current thread."""
        return getattr(cls._local, 'correlation_id', None) or str(uuid.uuid4())[:8]

    @classmethod
    def new_correlation_id(cls) -> str:
        """Generate and set a new correlation ID."""
        correlation_id = str(uuid.uuid4())[:12]
        cls.set_correlation_id(correlation_id)
        return correlation_id

    def _build_log_record(self, level: str, message: str, **kwargs) -> Dict[str, Any]:
        """Build a structured log record."""
        return {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': level,
            'logger': self.name,
            'correlation_id': self.get_correlation_id(),
            'message': message,
            **kwargs
        }

    def _emit(self, level: int, level_name: str, message: str, exc_info: bool = False, **kwargs):
        record = self._build_log_record(level_name, message, **kwargs)
        if exc_info:
            import traceback
            record['traceback'] = traceback.format_exc()
        text = json.dumps(record, default=str) if self.config.log_format == 'json' else message
        self.logger.log(level, text, exc_info=exc_info, extra=kwargs)

    def debug(self, message: str, **kwargs):
        """Log debug message."""
        self._emit(logging.DEBUG, 'DEBUG', message, **kwargs)

    def info(self, message: str, **kwargs):
        """Log info message."""
        self._emit(logging.INFO, 'INFO', message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message."""
        self._emit(logging.WARNING, 'WARNING', message, **kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs):
        """Log error message with optional exception info."""
        self._emit(logging.ERROR, 'ERROR', message, exc_info=exc_info, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log exception with full traceback."""
        self.error(message, exc_info=True, **kwargs)

    @contextmanager
    def log_operation(self, operation: str, **context):
        """Context manager for logging operation start/end with timing."""
        start_time = time.time()
        self.debug(f"{operation} started", operation=operation, status='started', **context)
        try:
            yield
            duration_ms = (time.time() - start_time) * 1000
            self.info(f"{operation} completed", operation=operation, status='completed',
                      duration_ms=round(duration_ms, 2), **context)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self.error(f"{operation} failed: {e}", operation=operation, status='failed',
                       duration_ms=round(duration_ms, 2), exc_info=True, **context)
            raise


class JsonFormatter(logging.Formatter):
    """JSON log formatter."""

    _RESERVED = frozenset((
        'name', 'msg', 'args', 'created', 'filename', 'funcName',
        'levelname', 'levelno', 'lineno', 'module', 'msecs',
        'pathname', 'process', 'processName', 'relativeCreated',
        'stack_info', 'thread', 'threadName', 'exc_info', 'exc_text',
        'message', 'taskName'
    ))

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        if record.exc_info:
            log_data['traceback'] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in self._RESERVED:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, get_config())


# =============================================================================
# ERROR HANDLING UTILITIES
# =============================================================================

class CriticMergeError(Exception):
    """Base exception for CriticMerge."""

    def __init__(self, message: str, code: str = "UNKNOWN_ERROR",
                 status_code: int = 500, details: Optional[Dict] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API response dict."""
        return {
            'success': False,
            'error': {
                'code': self.code,
                'message': self.message,
                'details': self.details
            }
        }


class ValidationError(CriticMergeError):
    """Input validation error."""
    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        super().__init__(message, code="VALIDATION_ERROR", status_code=400,
                         details={'field': field, **kwargs})


class ProcessingError(CriticMergeError):
    """Diff/merge processing error."""
    def __init__(self, message: str, stage: Optional[str] = None, **kwargs):
        super().__init__(message, code="PROCESSING_ERROR", status_code=500,
                         details={'stage': stage, **kwargs})


class SnapshotError(CriticMergeError):
    """Conflict snapshot could not be read or written."""
    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        super().__init__(message, code="SNAPSHOT_ERROR", status_code=400,
                         details={'path': path, **kwargs})


def handle_errors(logger: Optional[StructuredLogger] = None):
    """Decorator for standardized error handling."""
    def decorator(func: Callable):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            _logger = logger or get_logger(func.__module__)
            try:
                return func(*args, **kwargs)
            except CriticMergeError:
                raise
            except FileNotFoundError as e:
                _logger.error(f"File not found: {e}", exc_info=True)
                raise SnapshotError(f"File not found: {e}")
            except (ValueError, TypeError, KeyError) as e:
                _logger.error(f"Validation error: {e}", exc_info=True)
                raise ValidationError(str(e))
            except Exception as e:
                _logger.exception(f"Unexpected error in {func.__name__}: {e}")
                raise ProcessingError(f"An unexpected error occurred: {type(e).__name__}")
        return wrapper
    return decorator
