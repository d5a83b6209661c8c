"""
Provides common, stateless utility functions used across the application.

Time, pair keys, timers and detached background work live here so the
components can have them injected and tests can swap them for deterministic
versions.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable

import eventlet


def utc_now() -> datetime:
    """Returns the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def pair_key(user_a: str, user_b: str) -> str:
    """
    Builds the order-independent key identifying the conversation between two users.

    Returns:
        The two ids sorted and joined, e.g. 'u1:u2' for both ('u1', 'u2') and ('u2', 'u1').
    """
    first, second = sorted((user_a, user_b))
    return f"{first}:{second}"


def schedule_after(delay: float, func: Callable, *args: Any) -> Any:
    """Schedules func(*args) on the event loop after delay seconds. The handle has cancel()."""
    return eventlet.spawn_after(delay, func, *args)


def spawn_detached(spawn: Callable, func: Callable, *args: Any, **kwargs: Any) -> Any:
    """
    Runs func through the given spawner as fire-and-forget work.

    Whatever func raises is logged here and never reaches the caller, so
    best-effort side effects (broadcasts, status writes) cannot abort the
    operation that triggered them.

    Args:
        spawn: A callable with the signature of socketio.start_background_task.
        func: The work to run.
    """

    def guarded() -> None:
        try:
            func(*args, **kwargs)
        except Exception:
            logging.exception(f"Detached task '{getattr(func, '__name__', func)}' failed.")

    return spawn(guarded)
