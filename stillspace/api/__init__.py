"""
HTTP gateway for Still Space.

Exposes the offline worker in front of the app's API server.
"""
from stillspace.api.models import (
    ConnectivityRequest,
    PushRequest,
    RecordRequest,
    SyncRequest,
    UpdateRequest,
)

__all__ = [
    "ConnectivityRequest",
    "PushRequest",
    "RecordRequest",
    "SyncRequest",
    "UpdateRequest",
]
