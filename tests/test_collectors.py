import json
import os
import subprocess
from collections import namedtuple

import pytest

from spdk_manager.config import Settings
from spdk_manager.errors import CollectorError
from spdk_manager.services import block_devices, collector, mount_table, nvme_cli, nvme_discovery
from spdk_manager.services.block_devices import KernelBlockCollector
from spdk_manager.services.collector import Collector
from spdk_manager.services.mount_table import MountTableCollector
from spdk_manager.services.nvme_cli import VendorNvmeCollector
from spdk_manager.services.nvme_discovery import DiscoveryToolCollector, summarize


def _completed(args, stdout="", stderr="", returncode=0):
    return subprocess.CompletedProcess(args=args, returncode=returncode, stdout=stdout, stderr=stderr)


LSBLK_OUTPUT = {
    "blockdevices": [
        {
            "name": "sda",
            "size": 500107862016,
            "type": "disk",
            "mountpoint": None,
            "model": "Samsung SSD 860 ",
            "serial": "S3Z9NB0K",
            "vendor": "ATA     ",
            "tran": "sata",
            "rota": False,
            "ro": False,
            "rm": False,
            "hotplug": False,
            "phy-sec": 512,
            "log-sec": 512,
            "children": [
                {"name": "sda1", "size": 536870912, "type": "part", "mountpoint": "/boot/efi", "fstype": "vfat"},
                {"name": "sda2", "size": 1024, "type": "part", "mountpoint": None},
            ],
        },
        {
            "name": "nvme0n1",
            "size": "1000204886016",
            "type": "disk",
            "model": "Samsung SSD 980",
            "serial": "S649NF0R",
            "tran": "nvme",
            "rota": "0",
            "ro": "0",
            "rm": "0",
        },
        {"name": "loop0", "size": 4096, "type": "loop"},
    ]
}


@pytest.fixture
def sysfs(tmp_path):
    """Minimal sysfs tree: nvme0n1 links straight to its PCI function, nvme1 only via its controller."""
    root = tmp_path / "sys"
    device_dir = root / "devices" / "pci0000:00" / "0000:00:04.0" / "nvme" / "nvme0" / "nvme0n1"
    device_dir.mkdir(parents=True)
    controller_dir = root / "devices" / "pci0000:00" / "0000:00:05.0" / "nvme" / "nvme1"
    controller_dir.mkdir(parents=True)

    (root / "block").mkdir()
    os.symlink(device_dir, root / "block" / "nvme0n1")
    (root / "class" / "nvme").mkdir(parents=True)
    os.symlink(controller_dir, root / "class" / "nvme" / "nvme1")
    return str(root)


def test_run_command_maps_failures(monkeypatch):
    def missing(*args, **kwargs):
        raise FileNotFoundError()

    monkeypatch.setattr(collector.subprocess, "run", missing)
    with pytest.raises(CollectorError, match="binary not found"):
        collector.run_command(["lsblk"], 1)

    def failing(args, **kwargs):
        raise subprocess.CalledProcessError(32, args, stderr="boom")

    monkeypatch.setattr(collector.subprocess, "run", failing)
    with pytest.raises(CollectorError, match="return code 32"):
        collector.run_command(["lsblk"], 1)

    def hanging(args, **kwargs):
        raise subprocess.TimeoutExpired(args, 1)

    monkeypatch.setattr(collector.subprocess, "run", hanging)
    with pytest.raises(CollectorError, match="timed out"):
        collector.run_command(["lsblk"], 1)


def test_collector_absorbs_failures(caplog):
    class Broken(Collector):
        source_name = "broken things"

        def _collect(self):
            raise CollectorError("nope")

    assert Broken().collect() == []
    assert "Could not get broken things" in caplog.text


def test_kernel_collector_parses_lsblk(monkeypatch, sysfs):
    calls = []

    def fake_run(args, **kwargs):
        calls.append(args)
        return _completed(args, stdout=json.dumps(LSBLK_OUTPUT))

    monkeypatch.setattr(collector.subprocess, "run", fake_run)
    devices = KernelBlockCollector(Settings(sysfs_root=sysfs)).collect()

    assert calls[0][:4] == ["lsblk", "-J", "-b", "-o"]
    assert [device.name for device in devices] == ["sda", "nvme0n1"]

    sda, nvme = devices
    assert sda.device_path == "/dev/sda"
    assert sda.model == "Samsung SSD 860"
    assert sda.vendor == "ATA"
    assert sda.is_nvme is False
    assert sda.sysfs_pcie_addr is None
    assert [part.name for part in sda.partitions] == ["sda1", "sda2"]
    assert sda.mountpoints == ["/boot/efi"]

    assert nvme.is_nvme is True
    assert nvme.size_bytes == 1000204886016
    assert nvme.rotational is False
    assert nvme.sysfs_pcie_addr == "0000:00:04.0"
    assert nvme.controller_pcie_addr is None


def test_controller_link_used_when_block_link_missing(sysfs):
    assert block_devices.resolve_block_pcie(sysfs, "nvme1n1") is None
    assert block_devices.resolve_controller_pcie(sysfs, "nvme1n1") == "0000:00:05.0"
    assert block_devices.resolve_controller_pcie(sysfs, "nvme9n1") is None


def test_find_pcie_address_takes_last_match():
    path = "/sys/devices/pci0000:00/0000:00:1D.0/0000:3B:00.0/nvme/nvme0"
    assert block_devices.find_pcie_address(path) == "0000:3b:00.0"
    assert block_devices.find_pcie_address("pcie 0000:00:04.0") == "0000:00:04.0"
    assert block_devices.find_pcie_address(None) is None


def test_format_size():
    assert block_devices.format_size(0) == "0B"
    assert block_devices.format_size(512) == "512.00B"
    assert block_devices.format_size(512110190592) == "476.94GB"


def test_kernel_collector_returns_empty_on_bad_output(monkeypatch):
    monkeypatch.setattr(collector.subprocess, "run", lambda args, **kw: _completed(args, stdout="garbage"))

    assert KernelBlockCollector(Settings()).collect() == []


def test_vendor_collector_missing_binary(monkeypatch):
    monkeypatch.setattr(nvme_cli.shutil, "which", lambda name: None)
    settings = Settings()

    vendor = VendorNvmeCollector(settings, KernelBlockCollector(settings))
    assert vendor.collect() == []
    with pytest.raises(CollectorError, match="nvme-cli"):
        vendor._collect()


def test_vendor_collector_parses_listing(monkeypatch):
    listing = {
        "Devices": [
            {
                "DevicePath": "/dev/nvme1n1",
                "ModelNumber": "INTEL SSDPE2KX010T8",
                "SerialNumber": "PHLJ9",
                "Firmware": "VDV10131",
                "PhysicalSize": 1000204886016,
                "SectorSize": 4096,
                "NameSpace": 1,
                "UsedBytes": 12345,
                "MaximumLBA": 244190646,
                "Transport": "pcie",
                "Address": "0000:00:06.0",
            }
        ]
    }

    def fake_run(args, **kwargs):
        if args[1] == "list":
            return _completed(args, stdout=json.dumps(listing))
        # lsblk partition lookup
        return _completed(
            args,
            stdout=json.dumps(
                {
                    "blockdevices": [
                        {
                            "name": "nvme1n1",
                            "type": "disk",
                            "children": [{"name": "nvme1n1p1", "type": "part", "mountpoint": "/data"}],
                        }
                    ]
                }
            ),
        )

    monkeypatch.setattr(nvme_cli.shutil, "which", lambda name: "/usr/sbin/nvme")
    monkeypatch.setattr(collector.subprocess, "run", fake_run)
    settings = Settings()

    (record,) = VendorNvmeCollector(settings, KernelBlockCollector(settings)).collect()

    assert record.name == "nvme1n1"
    assert record.serial == "PHLJ9"
    assert record.sector_size == 4096
    assert record.namespace_id == 1
    assert record.transport_address == "pcie 0000:00:06.0"
    assert record.mountpoints == ["/data"]


def _discovery(monkeypatch, stdout="", stderr="", returncode=0):
    monkeypatch.setattr(
        nvme_discovery.subprocess,
        "run",
        lambda args, **kw: _completed(args, stdout=stdout, stderr=stderr, returncode=returncode),
    )
    return DiscoveryToolCollector(Settings())


def test_discovery_parses_report(monkeypatch):
    report = {
        "nvme_devices": [
            {
                "pcie_addr": "0000:00:05.0",
                "model_number": "QEMU NVMe Ctrl",
                "serial_number": "deadbeef",
                "total_capacity_gb": 10.0,
                "namespace_count": 1,
            }
        ],
        "total_devices": 1,
        "timestamp": 1700000000,
    }
    result = _discovery(monkeypatch, stdout=json.dumps(report)).run_discovery()

    assert result.total_devices == 1
    assert result.nvme_devices[0].pcie_addr == "0000:00:05.0"
    summary = summarize(result)
    assert summary["devices"][0]["status"] == "active"
    assert summary["total_capacity_gb"] == 10.0


@pytest.mark.parametrize(
    "stderr",
    [
        "EAL: Cannot create lock on device file",
        "open /dev/vfio/1: Permission denied",
        "No NVMe controllers found",
    ],
)
def test_discovery_benign_failures_yield_empty_result(monkeypatch, stderr):
    result = _discovery(monkeypatch, stderr=stderr, returncode=1).run_discovery()

    assert result.nvme_devices == []
    assert result.total_devices == 0


def test_discovery_real_failure_raises(monkeypatch):
    probe = _discovery(monkeypatch, stderr="segfault", returncode=139)

    with pytest.raises(CollectorError, match="return code 139"):
        probe.run_discovery()
    assert probe.collect() == []


def test_discovery_unparsable_output_is_empty(monkeypatch):
    result = _discovery(monkeypatch, stdout="not json").run_discovery()

    assert result.nvme_devices == []


def test_discovery_missing_tool(monkeypatch):
    def missing(*args, **kwargs):
        raise FileNotFoundError()

    monkeypatch.setattr(nvme_discovery.subprocess, "run", missing)

    with pytest.raises(CollectorError, match="not found"):
        DiscoveryToolCollector(Settings()).run_discovery()


def test_mount_table_lists_devices(monkeypatch):
    Part = namedtuple("Part", "device mountpoint fstype opts")
    monkeypatch.setattr(
        mount_table.psutil,
        "disk_partitions",
        lambda all=False: [Part("/dev/sda1", "/boot", "vfat", ""), Part("", "/proc", "proc", "")],
    )

    assert MountTableCollector().collect() == ["/dev/sda1"]


def test_discovery_keeps_valid_records_when_one_is_malformed(monkeypatch, caplog):
    """
    A single bad field in one discovery record must not cost the other
    controllers their place in the inventory.
    """
    report = {
        "nvme_devices": [
            {"pcie_addr": "0000:00:05.0", "model_number": "QEMU NVMe Ctrl", "total_capacity_gb": 10.0},
            {"pcie_addr": "0000:00:06.0", "model_number": "QEMU NVMe Ctrl", "total_capacity_gb": "N/A"},
        ],
        "total_devices": 2,
        "timestamp": 1700000000,
    }

    records = _discovery(monkeypatch, stdout=json.dumps(report)).collect()

    assert [record.pcie_addr for record in records] == ["0000:00:05.0"]
    assert "Skipping malformed discovery record 1" in caplog.text
