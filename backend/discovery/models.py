"""Pydantic models for peer discovery."""

from pydantic import BaseModel


class DiscoveredPeer(BaseModel):
    """A MediaBridge service resolved on the LAN."""
    name: str  # mDNS instance name without the service type
    address: str
    port: int
    app_id: str = ""
    last_seen: float  # Unix timestamp
