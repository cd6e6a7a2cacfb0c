"""Pydantic models for the pairing session."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from catalog.models import AssetCounts


class SessionState(str, Enum):
    """All possible states of the host's session with a peer."""
    IDLE = "idle"
    SEARCHING = "searching"
    AWAITING_PIN = "awaiting_pin"
    VERIFYING = "verifying"
    CONNECTED = "connected"
    SYNCING = "syncing"
    READY = "ready"
    ERROR = "error"


# States in which a paired peer may request assets.
SERVING_STATES = frozenset(
    {SessionState.CONNECTED, SessionState.SYNCING, SessionState.READY}
)

# States that exist only while a peer is attached.
PAIRING_STATES = frozenset({SessionState.AWAITING_PIN, SessionState.VERIFYING})


class SessionView(BaseModel):
    """The protocol-level session state, replaced wholesale on every transition."""
    model_config = ConfigDict(frozen=True)

    state: SessionState = SessionState.IDLE
    peer_name: str | None = None
    sync_progress: float = 0.0
    error: str | None = None


class SessionSnapshot(BaseModel):
    """Full session state, exposed to the frontend."""
    state: SessionState
    peer_name: str | None = None
    peer_address: str | None = None
    sync_progress: float = 0.0
    error: str | None = None
    pin_code: str | None = None
    pin_seconds_remaining: int = 0
    asset_counts: AssetCounts = Field(default_factory=AssetCounts)
    can_retry: bool = False
