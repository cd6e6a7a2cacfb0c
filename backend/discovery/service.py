"""
mDNS-based LAN discovery service.

Advertises this host as `<device name>._mediabridge._tcp.local.` and browses
the same service type for other MediaBridge instances on the LAN.
"""

import asyncio
import logging
import socket
import time

from zeroconf import IPVersion, ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from config import APP_ID, DEVICE_NAME, DISCOVERY_RESOLVE_TIMEOUT, SERVICE_TYPE
from discovery.models import DiscoveredPeer

logger = logging.getLogger(__name__)


def instance_name(service_name: str, service_type: str = SERVICE_TYPE) -> str:
    """Strip the service type from a full mDNS service name."""
    suffix = "." + service_type
    if service_name.endswith(suffix):
        return service_name[: -len(suffix)]
    return service_name.split(".")[0]


def local_address() -> str:
    """Best guess at the LAN address other devices can reach us on."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            # No packet is sent; connect only selects the outbound interface.
            sock.connect(("10.255.255.255", 1))
            return sock.getsockname()[0]
    except OSError:
        try:
            return socket.gethostbyname(socket.gethostname())
        except OSError:
            return "127.0.0.1"


class DiscoveryService:
    """Manages the mDNS advertisement and the registry of resolved peers."""

    def __init__(
        self,
        device_name: str = DEVICE_NAME,
        service_type: str = SERVICE_TYPE,
        resolve_timeout: float = DISCOVERY_RESOLVE_TIMEOUT,
    ) -> None:
        self._device_name = device_name
        self._service_type = service_type
        self._resolve_timeout = resolve_timeout
        self._port = 0  # Set by main.py after the session listener starts

        self._peers: dict[str, DiscoveredPeer] = {}
        self._on_peer_change: list = []  # callbacks: async def fn(event, peer)
        self._aiozc: AsyncZeroconf | None = None
        self._browser: AsyncServiceBrowser | None = None
        self._info: AsyncServiceInfo | None = None
        self._pending: set[asyncio.Task] = set()

    @property
    def device_name(self) -> str:
        return self._device_name

    @property
    def port(self) -> int:
        return self._port

    @port.setter
    def port(self, port: int) -> None:
        self._port = port

    @property
    def service_name(self) -> str:
        return f"{self._device_name}.{self._service_type}"

    @property
    def is_running(self) -> bool:
        return self._aiozc is not None

    def on_peer_change(self, callback) -> None:
        """Register a callback for peer discovered/lost events."""
        self._on_peer_change.append(callback)

    async def start(self) -> None:
        """Register our service and start browsing for peers."""
        if self._aiozc:
            return
        address = local_address()
        logger.info(
            f"Advertising {self.service_name} at {address}:{self._port}"
        )

        self._aiozc = AsyncZeroconf(ip_version=IPVersion.V4Only)
        self._info = AsyncServiceInfo(
            self._service_type,
            self.service_name,
            addresses=[socket.inet_aton(address)],
            port=self._port,
            properties={"app": APP_ID},
            server=f"{socket.gethostname()}.local.",
        )
        await self._aiozc.async_register_service(self._info)
        self._browser = AsyncServiceBrowser(
            self._aiozc.zeroconf,
            self._service_type,
            handlers=[self._on_service_state_change],
        )
        logger.info("Discovery service started")

    async def stop(self) -> None:
        """Withdraw the advertisement and stop browsing."""
        if not self._aiozc:
            return
        aiozc, self._aiozc = self._aiozc, None
        for task in list(self._pending):
            task.cancel()
        if self._browser:
            await self._browser.async_cancel()
            self._browser = None
        if self._info:
            await aiozc.async_unregister_service(self._info)
            self._info = None
        await aiozc.async_close()
        logger.info("Discovery service stopped")

    async def get_peers(self) -> list[DiscoveredPeer]:
        """Return a list of currently known peers."""
        return list(self._peers.values())

    def update_peer(self, peer: DiscoveredPeer) -> None:
        """Add or update a peer in the registry."""
        is_new = peer.name not in self._peers
        self._peers[peer.name] = peer

        if is_new:
            logger.info(f"Discovered peer: {peer.name} ({peer.address}:{peer.port})")
            for cb in self._on_peer_change:
                asyncio.ensure_future(cb("peer_discovered", peer))

    def remove_peer(self, name: str) -> None:
        peer = self._peers.pop(name, None)
        if peer is None:
            return
        logger.info(f"Peer lost: {peer.name} ({peer.address})")
        for cb in self._on_peer_change:
            asyncio.ensure_future(cb("peer_lost", peer))

    # --- zeroconf callbacks ---

    def _on_service_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        if name == self.service_name:
            return

        if state_change == ServiceStateChange.Removed:
            self.remove_peer(instance_name(name, service_type))
            return

        task = asyncio.ensure_future(self._resolve(zeroconf, service_type, name))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _resolve(self, zeroconf: Zeroconf, service_type: str, name: str) -> None:
        info = AsyncServiceInfo(service_type, name)
        resolved = await info.async_request(zeroconf, int(self._resolve_timeout * 1000))
        addresses = info.parsed_addresses(IPVersion.V4Only) if resolved else []
        if not addresses or not info.port:
            logger.debug(f"Could not resolve {name}")
            return

        app_id = (info.properties or {}).get(b"app") or b""
        self.update_peer(
            DiscoveredPeer(
                name=instance_name(name, service_type),
                address=addresses[0],
                port=info.port,
                app_id=app_id.decode("utf-8", errors="replace"),
                last_seen=time.time(),
            )
        )
