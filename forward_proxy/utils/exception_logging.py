"""
Utility functions for exception logging and for turning exceptions into
client-facing error messages. Streamed responses run inside anyio task
groups, so failures can arrive wrapped in exception groups.
"""

import logging


def _safe_str(obj) -> str:
    """
    Safely convert an object to string, handling cases where __str__ or __repr__ might fail.
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _safe_get_exceptions(exception_group) -> list:
    try:
        return list(exception_group.exceptions)
    except Exception:
        return []


def find_exception_in_exception_groups(exception: BaseException, target_type: type):
    """
    Recursively search through an exception and its sub-exceptions to find
    the first one of the target type.

    Args:
        exception: The exception to search through
        target_type: The exception type to look for

    Returns:
        The first exception matching the target type, or None if not found
    """
    if isinstance(exception, target_type):
        return exception

    for sub_exc in _safe_get_exceptions(exception) if hasattr(exception, "exceptions") else []:
        inner_exc = find_exception_in_exception_groups(sub_exc, target_type)
        if inner_exc is not None:
            return inner_exc

    return None


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception, including every sub-exception of an exception group.
    Never raises, even for exceptions whose __str__ is broken.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    safe_prefix = _safe_str(prefix) if prefix is not None else ""
    sub_exceptions = (
        _safe_get_exceptions(exception) if hasattr(exception, "exceptions") else []
    )

    try:
        if sub_exceptions:
            logger.log(
                level,
                f"{safe_prefix} Exception with {len(sub_exceptions)} sub-exceptions: {_safe_str(exception)}",
            )
            for i, sub_exc in enumerate(sub_exceptions):
                logger.log(
                    level,
                    f"{safe_prefix} Sub-exception {i+1}: {type(sub_exc).__name__}: {_safe_str(sub_exc)}",
                    exc_info=sub_exc,
                )
        else:
            logger.log(
                level,
                f"{safe_prefix} Exception: {_safe_str(exception)}",
                exc_info=exception if exception is not None else False,
            )
    except Exception:
        # Logging must never mask the failure being logged
        try:
            logger.log(level, f"{safe_prefix} Exception (logging failed)")
        except Exception:
            pass


def format_exception_message(exception: BaseException) -> str:
    """
    Format an exception message for an error response body, including
    sub-exceptions of exception groups.
    """
    if exception is None:
        return "None"

    sub_exceptions = (
        _safe_get_exceptions(exception) if hasattr(exception, "exceptions") else []
    )
    message = getattr(exception, "message", None)
    main_str = message if isinstance(message, str) else _safe_str(exception)
    if not main_str:
        main_str = type(exception).__name__

    if not sub_exceptions:
        return main_str

    details = "; ".join(
        f"{type(sub_exc).__name__}: {_safe_str(sub_exc)}" for sub_exc in sub_exceptions
    )
    return f"{main_str} (Sub-exceptions: {details})"
