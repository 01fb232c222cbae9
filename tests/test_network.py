"""Tests for local network inspection."""

import socket
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from speedprobe import network
from speedprobe.models import DeviceType, InterfaceKind


def _addr(address, netmask="255.255.255.0", family=socket.AF_INET):
    return SimpleNamespace(family=family, address=address, netmask=netmask)


def _patch_interfaces(addrs, up=None):
    up = up if up is not None else set(addrs)
    stats = {name: SimpleNamespace(isup=name in up) for name in addrs}
    return (
        patch.object(network.psutil, "net_if_addrs", return_value=addrs),
        patch.object(network.psutil, "net_if_stats", return_value=stats),
    )


class TestInterfaceKind:
    @pytest.mark.parametrize(
        "name, kind",
        [
            ("lo", InterfaceKind.LOOPBACK),
            ("lo0", InterfaceKind.LOOPBACK),
            ("wlan0", InterfaceKind.WIFI),
            ("wlp3s0", InterfaceKind.WIFI),
            ("en0", InterfaceKind.WIFI),
            ("en5", InterfaceKind.ETHERNET),
            ("eth0", InterfaceKind.ETHERNET),
            ("enp0s31f6", InterfaceKind.ETHERNET),
            ("wwan0", InterfaceKind.CELLULAR),
            ("pdp_ip0", InterfaceKind.CELLULAR),
            ("docker0", InterfaceKind.OTHER),
        ],
    )
    def test_names(self, name, kind):
        assert network.interface_kind(name) == kind


class TestPrimaryInterface:
    def test_prefers_wifi(self):
        addrs = {
            "lo": [_addr("127.0.0.1", "255.0.0.0")],
            "eth0": [_addr("10.0.0.5")],
            "wlan0": [_addr("192.168.1.42")],
        }
        p1, p2 = _patch_interfaces(addrs)
        with p1, p2:
            iface = network.primary_interface()
            assert network.local_ipv4() == "192.168.1.42"
            assert network.current_interface_kind() == InterfaceKind.WIFI
            assert network.is_network_available()
        assert iface.name == "wlan0"
        assert str(iface.network) == "192.168.1.0/24"

    def test_skips_down_and_link_local(self):
        addrs = {
            "wlan0": [_addr("192.168.1.42")],
            "eth0": [_addr("169.254.3.3")],
            "eth1": [_addr("10.1.2.3")],
        }
        p1, p2 = _patch_interfaces(addrs, up={"eth0", "eth1"})
        with p1, p2:
            assert network.local_ipv4() == "10.1.2.3"

    def test_ignores_ipv6_only(self):
        addrs = {"eth0": [_addr("fe80::1", family=socket.AF_INET6)]}
        p1, p2 = _patch_interfaces(addrs)
        with p1, p2:
            assert network.primary_interface() is None
            assert network.current_interface_kind() == InterfaceKind.NONE
            assert not network.is_network_available()

    def test_loopback_only(self):
        p1, p2 = _patch_interfaces({"lo": [_addr("127.0.0.1", "255.0.0.0")]})
        with p1, p2:
            assert network.local_ipv4() is None


class TestSubnet:
    def test_subnet_prefix(self):
        assert network.subnet_prefix("192.168.1.42") == "192.168.1"

    def test_subnet_prefix_invalid(self):
        with pytest.raises(ValueError):
            network.subnet_prefix("not-an-ip")

    @pytest.mark.parametrize("prefix", ["192.168.1", "192.168.1.", " 192.168.1 "])
    def test_validate_prefix(self, prefix):
        assert network.validate_prefix(prefix) == "192.168.1"

    @pytest.mark.parametrize("prefix", ["192.168", "192.168.1.5", "300.1.1", "a.b.c"])
    def test_validate_prefix_rejects(self, prefix):
        with pytest.raises(ValueError):
            network.validate_prefix(prefix)

    def test_candidates(self):
        addrs = network.candidate_addresses("10.0.0")
        assert len(addrs) == 254
        assert addrs[0] == "10.0.0.1"
        assert addrs[-1] == "10.0.0.254"


def test_local_device_info():
    with patch.object(network.socket, "gethostname", return_value="workstation"):
        info = network.local_device_info()
    assert info.name == "workstation"
    assert info.device_type == DeviceType.DESKTOP
    assert info.source == "local"
