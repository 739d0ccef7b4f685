"""Standardized Error Handling Utilities

Provides the WebpLab exception hierarchy and consistent error handling
patterns for the conversion, comparison and batch layers.
"""

from __future__ import annotations

import logging
import re
import traceback
from collections.abc import Callable
from contextlib import contextmanager
from enum import Enum
from typing import Any


class ErrorLevel(Enum):
    """Error severity levels for consistent logging."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class WebpLabError(Exception):
    """Base exception class for all WebpLab errors."""

    def __init__(
        self, message: str, cause: Exception | None = None, context: dict | None = None
    ):
        super().__init__(message)
        self.cause = cause
        self.context = context or {}

    def __str__(self) -> str:
        base_msg = super().__str__()
        if self.cause:
            return f"{base_msg} (caused by: {self.cause})"
        return base_msg


class ConfigurationError(WebpLabError):
    """Raised when configuration is invalid or missing."""

    pass


class InputValidationError(WebpLabError):
    """Raised when an input file fails the pre-conversion checks."""

    pass


class AttributeAnalysisError(WebpLabError):
    """Raised when probing an image for its attributes fails."""

    pass


class CodecError(WebpLabError):
    """Raised when the image codec fails."""

    pass


class EncodeError(CodecError):
    """Raised when WebP encoding fails."""

    pass


class DecodeError(CodecError):
    """Raised when decoding an image to raw pixels fails."""

    pass


class SizeMismatchError(WebpLabError, ValueError):
    """Raised when two pixel buffers being compared differ in length."""

    pass


class BatchItemError(WebpLabError):
    """Wraps any failure of a single batch item."""

    def __init__(
        self,
        item_id: str,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause=cause, context=context)
        self.item_id = item_id


def handle_error(
    error: Exception,
    operation: str,
    error_type: type[WebpLabError] = WebpLabError,
    level: ErrorLevel = ErrorLevel.ERROR,
    context: dict | None = None,
    logger: logging.Logger | None = None,
    reraise: bool = True,
) -> WebpLabError | None:
    """Standardized error handling with consistent logging and error transformation.

    Args:
        error: Original exception that occurred
        operation: Description of operation that failed
        error_type: Type of WebpLabError to raise
        level: Logging level for the error
        context: Additional context information
        logger: Logger to use (defaults to module logger)
        reraise: Whether to reraise the transformed exception

    Returns:
        The transformed error if reraise=False, otherwise None

    Raises:
        WebpLabError: Transformed error if reraise=True
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    message = f"Failed to {operation}: {error}"

    error_context = dict(context or {})
    error_context.update(
        {
            "operation": operation,
            "original_error_type": type(error).__name__,
        }
    )

    transformed_error = error_type(message, cause=error, context=error_context)

    log_message = f"🚨 {operation.capitalize()} failed: {error}"
    context_str = ", ".join(f"{k}={v}" for k, v in error_context.items())
    if context_str:
        log_message += f" (context: {context_str})"

    log_func = getattr(logger, level.value)
    log_func(log_message)

    if level in [ErrorLevel.ERROR, ErrorLevel.CRITICAL]:
        logger.debug(f"Traceback for {operation}: {traceback.format_exc()}")

    if reraise:
        raise transformed_error from error
    return transformed_error


@contextmanager
def error_context(
    operation: str,
    error_type: type[WebpLabError] = WebpLabError,
    level: ErrorLevel = ErrorLevel.ERROR,
    context: dict | None = None,
    logger: logging.Logger | None = None,
) -> Any:
    """Context manager for standardized error handling.

    Usage:
        with error_context("encode file", EncodeError, context={'file': 'a.gif'}):
            risky_operation()

    WebpLab errors raised inside the block pass through unchanged; anything
    else is converted to ``error_type``.
    """
    try:
        yield
    except WebpLabError:
        raise
    except Exception as e:
        handle_error(e, operation, error_type, level, context, logger, reraise=True)


def log_warning_with_context(
    message: str, context: dict | None = None, logger: logging.Logger | None = None
) -> None:
    """Log a warning with standardized context formatting."""
    if logger is None:
        logger = logging.getLogger(__name__)

    warning_msg = f"⚠️  {message}"
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items())
        warning_msg += f" (context: {context_str})"

    logger.warning(warning_msg)


def log_info_with_context(
    message: str, context: dict | None = None, logger: logging.Logger | None = None
) -> None:
    """Log an info message with standardized context formatting."""
    if logger is None:
        logger = logging.getLogger(__name__)

    info_msg = f"ℹ️  {message}"
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items())
        info_msg += f" (context: {context_str})"

    logger.info(info_msg)


def safe_operation(
    operation_func: Callable[[], Any],
    operation_name: str,
    default_return: Any = None,
    error_type: type[WebpLabError] = WebpLabError,
    level: ErrorLevel = ErrorLevel.WARNING,
    context: dict | None = None,
    logger: logging.Logger | None = None,
) -> Any:
    """Execute an operation, returning ``default_return`` if it fails.

    Used where a missing value is acceptable (e.g. optional metadata in
    reports); the failure is still logged.
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    try:
        with error_context(operation_name, error_type, level, context, logger):
            return operation_func()
    except WebpLabError as e:
        logger.warning(f"Safe operation '{operation_name}' failed, using default: {e}")
        return default_return


def clean_error_message(error_msg: str) -> str:
    """Clean an error message for single-line report and CSV output.

    Newlines, tabs and repeated whitespace collapse to single spaces, quotes
    become apostrophes, commas become semicolons and control characters are
    dropped. Messages longer than 500 characters are truncated.
    """
    cleaned = str(error_msg)

    cleaned = cleaned.replace("\n", " ").replace("\r", " ")
    cleaned = cleaned.replace('"', "'").replace("`", "'")
    cleaned = cleaned.replace(",", ";")
    cleaned = cleaned.replace("\t", " ")
    cleaned = re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]", "", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned)
    cleaned = cleaned.strip()

    max_length = 500
    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - 3] + "..."

    return cleaned
