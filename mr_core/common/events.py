# mr_core/common/events.py
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], None]

_registry: Dict[str, List[Handler]] = defaultdict(list)


def subscribe(event_name: str):
    """
    Decorator to register an event handler.
    Usage:
        @subscribe("records.version_created")
        def handler(payload): ...

    Registering the same function twice (app reloads in tests) is a no-op.
    """
    def _decorator(fn: Handler) -> Handler:
        if fn not in _registry[event_name]:
            _registry[event_name].append(fn)
        return fn
    return _decorator


def publish(event_name: str, payload: Dict[str, Any]) -> int:
    """
    Deliver an event to in-process subscribers, in registration order.

    Events are published after the originating operation has committed and
    been audited, so a failing handler is logged and skipped: it must not
    turn a finished operation into an error or starve the other handlers.
    Returns the number of handlers that completed.
    """
    handlers = list(_registry.get(event_name, []))
    if not handlers:
        logger.debug("No subscribers for %s", event_name)
        return 0

    delivered = 0
    for handler in handlers:
        try:
            handler(payload)
        except Exception:
            logger.exception("Subscriber %s failed for %s", getattr(handler, "__name__", handler), event_name)
            continue
        delivered += 1
    return delivered
