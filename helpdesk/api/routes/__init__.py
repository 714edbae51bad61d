"""Route modules exposed by the API package."""

from . import metrics, ping, tickets, users

__all__ = ["metrics", "ping", "tickets", "users"]
