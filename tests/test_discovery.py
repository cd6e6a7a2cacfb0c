import asyncio
import time

import pytest
from zeroconf import ServiceStateChange

from discovery.models import DiscoveredPeer
from discovery.service import DiscoveryService, instance_name


def _peer(name="Workstation-7", address="192.168.1.20"):
    return DiscoveredPeer(name=name, address=address, port=2347, last_seen=time.time())


def test_instance_name_strips_service_type():
    assert instance_name("Workstation-7._mediabridge._tcp.local.") == "Workstation-7"
    assert instance_name("Desk PC._other._tcp.local.", "_other._tcp.local.") == "Desk PC"


def test_service_name_uses_device_name():
    service = DiscoveryService(device_name="Studio-Mac")
    assert service.service_name == "Studio-Mac._mediabridge._tcp.local."
    assert not service.is_running


@pytest.mark.asyncio
async def test_peer_registry_emits_once_per_peer():
    service = DiscoveryService(device_name="Studio-Mac")
    events = []

    async def record(event, peer):
        events.append((event, peer.name))

    service.on_peer_change(record)
    service.update_peer(_peer())
    service.update_peer(_peer(address="192.168.1.21"))
    await asyncio.sleep(0)

    peers = await service.get_peers()
    assert [p.address for p in peers] == ["192.168.1.21"]
    assert events == [("peer_discovered", "Workstation-7")]

    service.remove_peer("Workstation-7")
    service.remove_peer("Workstation-7")
    await asyncio.sleep(0)
    assert events[-1] == ("peer_lost", "Workstation-7")
    assert len(events) == 2
    assert await service.get_peers() == []


@pytest.mark.asyncio
async def test_removed_service_drops_peer():
    service = DiscoveryService(device_name="Studio-Mac")
    service.update_peer(_peer())
    service._on_service_state_change(
        zeroconf=None,
        service_type="_mediabridge._tcp.local.",
        name="Workstation-7._mediabridge._tcp.local.",
        state_change=ServiceStateChange.Removed,
    )
    assert await service.get_peers() == []


@pytest.mark.asyncio
async def test_own_advertisement_is_ignored():
    service = DiscoveryService(device_name="Studio-Mac")
    service._on_service_state_change(
        zeroconf=None,
        service_type="_mediabridge._tcp.local.",
        name=service.service_name,
        state_change=ServiceStateChange.Added,
    )
    assert service._pending == set()
