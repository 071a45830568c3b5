"""
Infrastructure adapters: datastore, change feed, identity, push
"""
from .change_feed import ChangeFeed, ChangeChannel, InMemoryChangeFeed, RedisChangeFeed, INSERT
from .identity import IdentityProvider, SessionIdentityProvider
from .push import PushTransport, LoggingPushTransport

__all__ = [
    "ChangeFeed",
    "ChangeChannel",
    "InMemoryChangeFeed",
    "RedisChangeFeed",
    "INSERT",
    "IdentityProvider",
    "SessionIdentityProvider",
    "PushTransport",
    "LoggingPushTransport",
]
