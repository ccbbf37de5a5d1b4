"""Fire-and-forget work that must never affect the request that triggered it."""

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

from funnelchat.config import settings
from funnelchat.logging_config import get_logger

logger = get_logger("background")

_executor = ThreadPoolExecutor(max_workers=settings.background_workers, thread_name_prefix="funnelchat-bg")


def _run_logged(fn: Callable, *args, **kwargs) -> None:
    try:
        fn(*args, **kwargs)
    except Exception as e:
        logger.error(
            f"Background task {getattr(fn, '__name__', fn)} failed: {e}",
            extra={"context": {"task": getattr(fn, "__name__", str(fn))}},
            exc_info=True,
        )


def run_in_background(fn: Callable, *args, **kwargs) -> Future:
    """Schedule fn on the shared pool. Errors are logged, never raised to the caller."""
    return _executor.submit(_run_logged, fn, *args, **kwargs)
