import json
import logging
import os
import shutil
from typing import Any, Dict, List, Optional

from spdk_manager.config import Settings
from spdk_manager.errors import CollectorError
from spdk_manager.models.sources import VendorNvmeDevice
from spdk_manager.services.block_devices import KernelBlockCollector, to_int
from spdk_manager.services.collector import Collector, run_command

logger = logging.getLogger(__name__)


def _transport_text(entry: Dict[str, Any]) -> Optional[str]:
    parts = [str(entry[key]) for key in ("Transport", "Address") if entry.get(key)]
    return " ".join(parts) or None


class VendorNvmeCollector(Collector):
    """NVMe namespaces listed by nvme-cli, augmented with lsblk partition data."""

    source_name = "NVMe devices (nvme-cli might not be installed)"

    def __init__(self, settings: Settings, block_collector: KernelBlockCollector) -> None:
        self.settings = settings
        self.block_collector = block_collector

    def _list_devices(self) -> List[Dict[str, Any]]:
        binary = shutil.which(self.settings.nvme_binary)
        if not binary:
            raise CollectorError("nvme-cli binary not found; install nvme-cli on the host")

        stdout = run_command([binary, "list", "-o", "json"], self.settings.command_timeout_seconds)
        if not stdout.strip():
            return []
        try:
            payload = json.loads(stdout)
        except json.JSONDecodeError as exc:
            raise CollectorError(f"Unable to parse nvme list output: {exc}") from exc
        return [entry for entry in payload.get("Devices") or [] if entry.get("DevicePath")]

    def _build_device(self, entry: Dict[str, Any]) -> VendorNvmeDevice:
        device_path = entry["DevicePath"]
        name = os.path.basename(device_path)

        extra: Dict[str, Any] = {}
        try:
            extra = self.block_collector.partition_info(device_path)
        except CollectorError as exc:
            logger.warning("Could not get partition info for %s: %s", name, exc)

        return VendorNvmeDevice(
            name=name,
            device_path=device_path,
            model=entry.get("ModelNumber"),
            serial=entry.get("SerialNumber"),
            vendor=entry.get("Vendor"),
            firmware=entry.get("Firmware"),
            size_bytes=to_int(entry.get("PhysicalSize")) or 0,
            sector_size=to_int(entry.get("SectorSize")),
            namespace_id=to_int(entry.get("NameSpace")),
            used_bytes=to_int(entry.get("UsedBytes")),
            maximum_lba=to_int(entry.get("MaximumLBA")),
            transport_address=_transport_text(entry),
            **extra,
        )

    def _collect(self) -> List[VendorNvmeDevice]:
        return [self._build_device(entry) for entry in self._list_devices()]
