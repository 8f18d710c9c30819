"""Event bus used for change notification.

Each ingest session owns its own bus; there is no module-level
instance, so subscribers of one session never see another session's events.
"""

from __future__ import annotations

import traceback
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from fileingest.core.logging import get_logger

_logger = get_logger(__name__)

Handler = Callable[[dict[str, Any]], None]
AllHandler = Callable[[str, dict[str, Any]], None]


class EventBus:
    """Simple pub/sub bus.

    Example:
        bus = EventBus()

        def on_added(data):
            print(data["data"]["file_id"])

        bus.subscribe("store.added", on_added)
        bus.publish("store.added", {"data": {"file_id": "file-a.png-1-x"}})
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Handler]] = defaultdict(list)
        self._all_subscribers: list[AllHandler] = []

    def subscribe(self, event: str, callback: Handler) -> None:
        """Subscribe to one event name.

        Args:
            event: Event name
            callback: Callback receiving the event data dict
        """
        self._subscribers[event].append(callback)

    def unsubscribe(self, event: str, callback: Handler) -> None:
        subs = self._subscribers.get(event)
        if subs and callback in subs:
            subs.remove(callback)

    def subscribe_all(self, callback: AllHandler) -> None:
        """Subscribe to every published event.

        Args:
            callback: Callback receiving the event name and data dict
        """
        self._all_subscribers.append(callback)

    def unsubscribe_all(self, callback: AllHandler) -> None:
        if callback in self._all_subscribers:
            self._all_subscribers.remove(callback)

    def publish(self, event: str, data: dict[str, Any] | None = None) -> None:
        """Publish an event; handler failures are logged and never propagate.

        Args:
            event: Event name
            data: Event data (optional)
        """
        data = data or {}

        for cb_event in list(self._subscribers.get(event, [])):
            try:
                cb_event(data)
            except Exception as e:
                _logger.error(
                    f"Error in event handler for '{event}' (callback={cb_event}): "
                    f"{type(e).__name__}: {e}\n{traceback.format_exc()}"
                )

        for cb_all in list(self._all_subscribers):
            try:
                cb_all(event, data)
            except Exception as e:
                _logger.error(
                    f"Error in all-event handler (event='{event}', callback={cb_all}): "
                    f"{type(e).__name__}: {e}\n{traceback.format_exc()}"
                )

    def subscriber_count(self, event: str | None = None) -> int:
        if event is None:
            return sum(len(v) for v in self._subscribers.values()) + len(self._all_subscribers)
        return len(self._subscribers.get(event, []))

    def clear(self) -> None:
        """Drop all subscribers."""
        self._subscribers.clear()
        self._all_subscribers.clear()
