"""
remote - Remote Store adapters.
"""

from observation_sync.remote.base import RemoteStore
from observation_sync.remote.http_remote import HTTPRemoteStore

__all__ = [
    "RemoteStore",
    "HTTPRemoteStore",
]
