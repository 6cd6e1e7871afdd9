"""
Bounded collaborator reads.

Price and correlation lookups run on one process-wide pool so a hung feed
occupies at most ``COLLABORATOR_MAX_WORKERS`` threads, however many scans or
harvests give up on it.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, Optional, TypeVar

from taxlot_engine.core.config import Config
from taxlot_engine.core.errors import CollaboratorTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

_pool: Optional[ThreadPoolExecutor] = None
_pool_guard = threading.Lock()


def collaborator_pool() -> ThreadPoolExecutor:
    global _pool
    with _pool_guard:
        if _pool is None:
            _pool = ThreadPoolExecutor(max_workers=Config.COLLABORATOR_MAX_WORKERS,
                                       thread_name_prefix="collaborator")
        return _pool


def call_with_timeout(func: Callable[..., T], *args, timeout: Optional[float] = None) -> T:
    """
    Run ``func(*args)`` on the collaborator pool and wait at most ``timeout`` seconds.

    Raises:
        CollaboratorTimeout: The call did not finish in time
    """
    timeout = Config.COLLABORATOR_TIMEOUT_SECONDS if timeout is None else timeout
    future = collaborator_pool().submit(func, *args)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        name = getattr(func, "__qualname__", repr(func))
        if not future.cancel():
            logger.warning("Abandoned %s%s after %ss; the worker keeps running until it returns",
                           name, args, timeout)
        raise CollaboratorTimeout(f"{name}{args} exceeded {timeout}s") from None
