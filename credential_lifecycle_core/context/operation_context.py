"""
Operation context for logging entry, exit and failure of service operations.
"""

import time
import uuid
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Optional, TypeVar, Union, cast

from ..exceptions import BaseError, get_correlation_id, set_correlation_id
from ..utils.logger import get_logger


class OperationContext:
    """Context for a specific operation."""

    def __init__(self, operation_name: str, correlation_id: Optional[str] = None, **context):
        self.operation_name = operation_name
        self.operation_id = str(uuid.uuid4())
        self.correlation_id = correlation_id or get_correlation_id() or str(uuid.uuid4())

        # Child operations on this thread share the correlation id
        set_correlation_id(self.correlation_id)

        self.context = context
        self.context["operation_id"] = self.operation_id
        self.context["correlation_id"] = self.correlation_id
        self.start_time = time.perf_counter()

    @property
    def duration_ms(self) -> float:
        return (time.perf_counter() - self.start_time) * 1000

    def add_context(self, **kwargs) -> None:
        self.context.update(kwargs)


class OperationHandler:
    """Logs operation ENTER/EXIT/ERROR with timing."""

    def __init__(self, logger=None):
        self.logger = logger if logger is not None else get_logger()

    @contextmanager
    def operation(self, name: str, **context):
        op_ctx = OperationContext(name, **context)
        ids = {"operation_id": op_ctx.operation_id, "correlation_id": op_ctx.correlation_id}

        self.logger.debug(f"ENTER: {name}", extra={**context, **ids})

        try:
            yield op_ctx
        except BaseError as e:
            e.add_context(operation_name=name, operation_id=op_ctx.operation_id)
            self.logger.error(
                f"ERROR: {name} -> {e.error_code.value}: {e.message}",
                extra={
                    **context,
                    **ids,
                    "duration_ms": round(op_ctx.duration_ms, 2),
                    "error_id": e.error_id,
                    "error_code": e.error_code.value,
                    "status": "error",
                },
            )
            raise
        except Exception as e:
            self.logger.exception(
                f"ERROR: {name} -> {type(e).__name__}: {str(e)}",
                extra={
                    **context,
                    **ids,
                    "duration_ms": round(op_ctx.duration_ms, 2),
                    "error_type": type(e).__name__,
                    "status": "error",
                },
            )
            raise

        self.logger.debug(
            f"EXIT: {name}",
            extra={**context, **ids, "duration_ms": round(op_ctx.duration_ms, 2), "status": "success"},
        )


F = TypeVar("F", bound=Callable[..., Any])


def operation(name: Union[Optional[str], Callable] = None):
    """
    Decorator for service operations.

    Args:
        name: Optional operation name. Defaults to ``module.Class.method``.
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            if name is not None:
                op_name = name
            else:
                op_name = func.__name__
                if args and hasattr(args[0], "__class__"):
                    op_name = f"{args[0].__class__.__name__}.{op_name}"
                op_name = f"{func.__module__.split('.')[-1]}.{op_name}"

            handler = OperationHandler()
            with handler.operation(op_name, source_module=func.__module__):
                return func(*args, **kwargs)

        return cast(F, wrapper)

    # Used without parentheses
    if callable(name):
        func, name = name, None
        return decorator(func)

    return decorator
