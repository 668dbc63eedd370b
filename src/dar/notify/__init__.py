from .base import Dispatcher
from .webhook import WebhookDispatcher

__all__ = [
    "Dispatcher",
    "WebhookDispatcher",
]
