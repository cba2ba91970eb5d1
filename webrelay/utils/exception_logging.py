"""
Utility functions for exception logging that never raise themselves.
"""

import logging


def _safe_str(obj) -> str:
    """str(), then repr(), then the type name; a broken __str__ must not hide the error."""
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            try:
                return f"<{type(obj).__name__} object (string conversion failed)>"
            except Exception:
                return "<object (all string conversions failed)>"


def _safe_get_exceptions(exception_group) -> list:
    try:
        return list(exception_group.exceptions)
    except Exception:
        return []


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Exception,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with its traceback, including sub-exceptions of exception groups.

    Used on the proxy's last-resort error path, so it swallows any failure of
    the logging itself.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        safe_prefix = _safe_str(prefix) if prefix is not None else ""
        safe_exception_str = "None" if exception is None else _safe_str(exception)

        # A group whose .exceptions raises is logged as a plain exception
        sub_exceptions = [] if exception is None else _safe_get_exceptions(exception)

        if sub_exceptions:
            logger.log(
                level,
                f"{safe_prefix} Exception with {len(sub_exceptions)} sub-exceptions: {safe_exception_str}",
            )
            for i, sub_exc in enumerate(sub_exceptions):
                try:
                    logger.log(
                        level,
                        f"{safe_prefix} Sub-exception {i+1}: {type(sub_exc).__name__}: {_safe_str(sub_exc)}",
                        exc_info=sub_exc,
                    )
                except Exception:
                    continue
        else:
            try:
                logger.log(
                    level,
                    f"{safe_prefix} Exception: {safe_exception_str}",
                    exc_info=exception if exception is not None else False,
                )
            except Exception:
                logger.log(level, f"{safe_prefix} Exception: {safe_exception_str}")
    except Exception:
        try:
            if logger is not None:
                logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            pass
