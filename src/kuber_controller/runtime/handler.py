"""Event handlers: map watched object changes to reconcile requests."""

from __future__ import annotations

from typing import Any

from ..kube.objects import name_of, namespace_of
from .queue import RateLimitingQueue
from .request import Request


class EventHandler:
    """
    Base class for event routers.

    Subclasses override the events they care about and add ``Request`` items
    to the queue they are given. The defaults ignore every event.
    """

    def create(self, obj: Any, queue: RateLimitingQueue) -> None:
        pass

    def update(self, old: Any, new: Any, queue: RateLimitingQueue) -> None:
        pass

    def delete(self, obj: Any, queue: RateLimitingQueue) -> None:
        pass


class EnqueueRequestForObject(EventHandler):
    """Enqueue the identity of the changed object itself."""

    def create(self, obj: Any, queue: RateLimitingQueue) -> None:
        queue.add(_request_for(obj))

    def update(self, old: Any, new: Any, queue: RateLimitingQueue) -> None:
        queue.add(_request_for(new))

    def delete(self, obj: Any, queue: RateLimitingQueue) -> None:
        queue.add(_request_for(obj))


def _request_for(obj: Any) -> Request:
    return Request(name=name_of(obj), namespace=namespace_of(obj))


class QueueBinding:
    """Informer listener feeding one controller's queue through a handler."""

    def __init__(self, handler: EventHandler, queue: RateLimitingQueue):
        self.handler = handler
        self.queue = queue

    def on_add(self, obj: Any) -> None:
        self.handler.create(obj, self.queue)

    def on_update(self, old: Any, new: Any) -> None:
        self.handler.update(old, new, self.queue)

    def on_delete(self, obj: Any) -> None:
        self.handler.delete(obj, self.queue)
