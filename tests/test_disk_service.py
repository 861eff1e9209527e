import asyncio
import json
import subprocess

import pytest

from spdk_manager.config import Settings
from spdk_manager.errors import CollectorError, DeviceNotFound
from spdk_manager.models.bdev import EngineBdev
from spdk_manager.models.sources import DiscoveredNvmeDevice, DiscoveryResult, KernelBlockDevice
from spdk_manager.services import disk_service
from spdk_manager.services.collector import Collector
from spdk_manager.services.disk_service import DiskService


class StaticCollector(Collector):
    def __init__(self, items):
        self.items = items

    def _collect(self):
        return list(self.items)


class FailingCollector(Collector):
    source_name = "failing source"

    def _collect(self):
        raise CollectorError("source is down")

    def run_discovery(self):
        raise CollectorError("probe crashed")


def build_service(kernel=None, engine=None, discovered=None, mounted=None, failing_vendor=True):
    return DiskService(
        settings=Settings(),
        block_collector=StaticCollector(kernel or []),
        vendor_collector=FailingCollector() if failing_vendor else StaticCollector([]),
        engine_collector=StaticCollector(engine or []),
        discovery_collector=StaticCollector(discovered or []),
        mount_collector=StaticCollector(mounted or []),
    )


KERNEL = [
    KernelBlockDevice(name="sda", device_path="/dev/sda", rotational=True),
    KernelBlockDevice(
        name="nvme0n1",
        device_path="/dev/nvme0n1",
        is_nvme=True,
        sysfs_pcie_addr="0000:00:04.0",
        size_bytes=1024,
    ),
]
DISCOVERED = [DiscoveredNvmeDevice(pcie_addr="0000:00:05.0", model_number="QEMU NVMe Ctrl")]


def test_inventory_survives_failing_source():
    """
    One source failing (nvme-cli here) still yields the devices the other
    sources found.
    """
    service = build_service(kernel=KERNEL, discovered=DISCOVERED, mounted=["/dev/sda1"])

    devices = asyncio.run(service.get_unified_inventory())

    assert [device.name for device in devices] == ["sda", "nvme0n1", "0000:00:05.0"]
    assert devices[0].is_mounted is True


def test_every_source_failing_gives_empty_inventory():
    service = DiskService(
        settings=Settings(),
        block_collector=FailingCollector(),
        vendor_collector=FailingCollector(),
        engine_collector=FailingCollector(),
        discovery_collector=FailingCollector(),
        mount_collector=FailingCollector(),
    )

    assert asyncio.run(service.get_unified_inventory()) == []
    assert asyncio.run(service.get_stats()).total == 0


def test_available_devices_and_stats():
    owned = EngineBdev.from_rpc(
        {"name": "Nvme1", "driver_specific": {"nvme": [{"pci_address": "0000:00:05.0"}]}}
    )
    service = build_service(kernel=KERNEL, engine=[owned], discovered=DISCOVERED, mounted=["/dev/sda1"])

    available = asyncio.run(service.get_available_devices())
    stats = asyncio.run(service.get_stats())

    assert [device.name for device in available] == ["nvme0n1"]
    assert stats.total == 3
    assert stats.mounted == 1
    assert stats.engine_owned == 1
    assert stats.available == 1


def test_get_device_by_name_display_name_or_path():
    service = build_service(kernel=KERNEL)

    assert asyncio.run(service.get_device("sda")).name == "sda"
    assert asyncio.run(service.get_device("0000:00:04.0")).name == "nvme0n1"
    assert asyncio.run(service.get_device("/dev/nvme0n1")).name == "nvme0n1"

    with pytest.raises(DeviceNotFound, match="Disk 'sdz' not found"):
        asyncio.run(service.get_device("sdz"))


def test_discover_nvme_degrades_to_empty_result():
    service = build_service()
    service.discovery_collector = FailingCollector()

    result = asyncio.run(service.discover_nvme())

    assert isinstance(result, DiscoveryResult)
    assert result.nvme_devices == []


def _smartctl(monkeypatch, report=None, raises=None):
    def fake_run(args, **kwargs):
        assert args[1:3] == ["-a", "-j"]
        if raises is not None:
            raise raises
        return subprocess.CompletedProcess(args, 4, stdout=json.dumps(report) if report else "", stderr="")

    monkeypatch.setattr(disk_service.subprocess, "run", fake_run)


@pytest.mark.parametrize(
    "report, status",
    [
        ({"smart_status": {"passed": True}}, "healthy"),
        ({"smart_status": {"passed": False}}, "unhealthy"),
        ({"device": {"name": "/dev/sda"}}, "unknown"),
        (None, "unknown"),
    ],
)
def test_check_health(monkeypatch, report, status):
    _smartctl(monkeypatch, report=report)
    service = build_service(kernel=KERNEL)

    assert asyncio.run(service.check_health("sda")).status == status


def test_check_health_timeout_is_error(monkeypatch):
    _smartctl(monkeypatch, raises=subprocess.TimeoutExpired(["smartctl"], 10))
    service = build_service(kernel=KERNEL)

    health = asyncio.run(service.check_health("sda"))
    assert health.status == "error"
    assert "timed out" in health.message


def test_check_health_without_device_node(monkeypatch):
    _smartctl(monkeypatch, raises=AssertionError("smartctl must not run"))
    service = build_service(discovered=DISCOVERED)

    health = asyncio.run(service.check_health("0000:00:05.0"))
    assert health.status == "unknown"
    assert health.message == "SMART data not available"


def test_smart_info_missing_binary(monkeypatch):
    _smartctl(monkeypatch, raises=FileNotFoundError())
    service = build_service(kernel=KERNEL)

    assert asyncio.run(service.get_smart_info("sda")) is None
