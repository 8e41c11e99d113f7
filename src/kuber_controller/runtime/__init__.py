"""Generic watch and reconcile runtime."""

from .cache import ObjectCache
from .caching_client import CachingClient
from .controller import Controller, Reconciler
from .handler import EnqueueRequestForObject, EventHandler
from .informer import Informer
from .leader import LeaderElector
from .manager import Manager, ManagerError
from .queue import RateLimitingQueue
from .request import DONE, Request, Result

__all__ = [
    "ObjectCache",
    "CachingClient",
    "Controller",
    "Reconciler",
    "EnqueueRequestForObject",
    "EventHandler",
    "Informer",
    "LeaderElector",
    "Manager",
    "ManagerError",
    "RateLimitingQueue",
    "DONE",
    "Request",
    "Result",
]
