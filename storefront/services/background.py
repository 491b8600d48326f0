import logging
import traceback
from collections.abc import Callable
from typing import Any

from fastapi import BackgroundTasks

from storefront.core.observability import get_request_id, log_event


def run_detached(task_name: str, origin_request_id: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Runs ``func`` after the response; failures are logged and dropped."""
    try:
        return func(*args, **kwargs)
    except Exception as exc:  # noqa: BLE001 - detached work never reaches the caller
        log_event(
            "detached_task_failed",
            level=logging.ERROR,
            task=task_name,
            origin_request_id=origin_request_id,
            error=str(exc),
            traceback=traceback.format_exc(limit=10),
        )
        return None


def spawn_detached(
    background: BackgroundTasks,
    task_name: str,
    func: Callable[..., Any],
    *args: Any,
    **kwargs: Any,
) -> None:
    background.add_task(run_detached, task_name, get_request_id(), func, *args, **kwargs)
