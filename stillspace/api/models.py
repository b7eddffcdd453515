"""
Pydantic models for the gateway control endpoints.
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional


class ConnectivityRequest(BaseModel):
    """Transition event for the connectivity state."""
    online: bool = Field(description="True for 'became online', False for 'became offline'")


class ConnectivityResponse(BaseModel):
    online: bool
    changed: bool = Field(description="Whether this event changed the state")
    drain: Optional[Dict[str, Any]] = Field(default=None, description="Write queue drain report, when one ran")


class PushRequest(BaseModel):
    """Push payload; an empty payload shows nothing."""
    data: Optional[str] = Field(default=None, description="Notification body text")


class PushResponse(BaseModel):
    shown: bool
    notification: Optional[Dict[str, Any]] = None


class NotificationClickRequest(BaseModel):
    action: Optional[str] = Field(default=None, description="'explore', 'close', or empty for the body")
    index: int = Field(default=-1, description="Which shown notification was clicked (default: the latest)")


class NotificationClickResponse(BaseModel):
    opened: Optional[str] = Field(default=None, description="URL of the page that was opened")


class SyncRequest(BaseModel):
    tag: str = Field(default="meditation-records", description="Background sync tag")


class RecordRequest(BaseModel):
    """A meditation session finished while offline."""
    duration: int = Field(ge=0, description="Session length in seconds")
    type: Literal["timer", "breathe", "guided"]
    completed: int = Field(default=1)


class RecordResponse(BaseModel):
    id: str
    pending: int = Field(description="Records waiting for sync")


class UpdateRequest(BaseModel):
    """Install a new version, or accept the one already waiting."""
    version: Optional[str] = Field(default=None, description="Version tag to install; omit to accept the waiting one")
    accept: bool = Field(default=True, description="Answer to the update prompt")


class UpdateResponse(BaseModel):
    accepted: bool
    registration: Dict[str, Any]
    reloads: List[str] = Field(default_factory=list, description="Clients reloaded by controller changes")
    error: Optional[str] = None
