import json
import logging
import os
import re
from typing import Any, Dict, List, Optional, Tuple

from spdk_manager.config import Settings
from spdk_manager.errors import CollectorError
from spdk_manager.models.disk import Partition
from spdk_manager.models.sources import KernelBlockDevice
from spdk_manager.services.collector import Collector, run_command

logger = logging.getLogger(__name__)

LSBLK_COLUMNS = (
    "NAME,SIZE,TYPE,MOUNTPOINT,FSTYPE,UUID,PARTUUID,MODEL,SERIAL,VENDOR,"
    "TRAN,ROTA,RO,RM,HOTPLUG,PHY-SEC,LOG-SEC"
)
PARTITION_COLUMNS = "NAME,SIZE,TYPE,MOUNTPOINT,FSTYPE,UUID,PARTUUID"

NVME_NAME_PATTERN = re.compile(r"^nvme\d+n\d+$")
NVME_CONTROLLER_PATTERN = re.compile(r"^(nvme\d+)")
PCIE_ADDRESS_PATTERN = re.compile(r"[0-9a-fA-F]{4}:[0-9a-fA-F]{2}:[0-9a-fA-F]{2}\.[0-7]")

_SIZE_UNITS = ["B", "KB", "MB", "GB", "TB", "PB"]


def to_bool(value: Any) -> bool:
    # lsblk < 2.33 prints "1"/"0", newer releases print JSON booleans
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return False


def to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def format_size(size_bytes: Optional[int]) -> str:
    """Human readable size with binary steps, e.g. 476.94GB."""
    if not size_bytes:
        return "0B"
    value = float(size_bytes)
    index = 0
    while value >= 1024 and index < len(_SIZE_UNITS) - 1:
        value /= 1024
        index += 1
    return f"{value:.2f}{_SIZE_UNITS[index]}"


def find_pcie_address(text: Optional[str]) -> Optional[str]:
    """
    Return the last PCIe address embedded in a path or transport string.

    The last match is the device itself; earlier ones are upstream bridges.
    """
    if not text:
        return None
    matches = PCIE_ADDRESS_PATTERN.findall(text)
    return matches[-1].lower() if matches else None


def is_nvme_device(name: str, transport: Optional[str]) -> bool:
    return bool(NVME_NAME_PATTERN.match(name)) or (transport or "").lower() == "nvme"


def _resolve_link_chain(path: str) -> Optional[str]:
    try:
        if not os.path.lexists(path):
            return None
        return os.path.realpath(path)
    except OSError as exc:
        logger.debug("Could not resolve %s: %s", path, exc)
        return None


def resolve_block_pcie(sysfs_root: str, name: str) -> Optional[str]:
    """PCIe address from /sys/block/<name>'s own symlink chain."""
    return find_pcie_address(_resolve_link_chain(os.path.join(sysfs_root, "block", name)))


def resolve_controller_pcie(sysfs_root: str, name: str) -> Optional[str]:
    """PCIe address from the parent controller (nvme0 for nvme0n1)."""
    candidates = [os.path.join(sysfs_root, "block", name, "device")]
    match = NVME_CONTROLLER_PATTERN.match(name)
    if match:
        candidates.append(os.path.join(sysfs_root, "class", "nvme", match.group(1)))

    for candidate in candidates:
        address = find_pcie_address(_resolve_link_chain(candidate))
        if address:
            return address
    return None


def parse_partitions(node: Dict[str, Any]) -> Tuple[List[Partition], List[str]]:
    """Partitions and mountpoints of one lsblk node (the disk's own mountpoint last)."""
    partitions: List[Partition] = []
    mountpoints: List[str] = []

    for child in node.get("children") or []:
        if child.get("type") != "part":
            continue
        name = child.get("name", "")
        partitions.append(
            Partition(
                name=name,
                device_path=f"/dev/{name}",
                size=to_int(child.get("size")),
                mountpoint=child.get("mountpoint"),
                fstype=child.get("fstype"),
                uuid=child.get("uuid"),
                part_uuid=child.get("partuuid"),
            )
        )
        if child.get("mountpoint"):
            mountpoints.append(child["mountpoint"])

    if node.get("mountpoint"):
        mountpoints.append(node["mountpoint"])

    return partitions, mountpoints


class KernelBlockCollector(Collector):
    """Disks known to the kernel, from ``lsblk -J -b``."""

    source_name = "block devices"

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def list_block_devices(
        self,
        device: Optional[str] = None,
        columns: str = LSBLK_COLUMNS,
    ) -> List[Dict[str, Any]]:
        args = [self.settings.lsblk_binary, "-J", "-b", "-o", columns]
        if device:
            args.append(device)
        stdout = run_command(args, self.settings.command_timeout_seconds)

        try:
            payload = json.loads(stdout)
        except json.JSONDecodeError as exc:
            raise CollectorError(f"Unable to parse lsblk output: {exc}") from exc
        return payload.get("blockdevices") or []

    def partition_info(self, device_path: str) -> Dict[str, Any]:
        """Partition and filesystem details of a single device."""
        nodes = self.list_block_devices(device_path, columns=PARTITION_COLUMNS)
        if not nodes:
            return {}
        node = nodes[0]
        partitions, mountpoints = parse_partitions(node)
        return {
            "partitions": partitions,
            "mountpoints": mountpoints,
            "fstype": node.get("fstype"),
            "uuid": node.get("uuid"),
            "part_uuid": node.get("partuuid"),
        }

    def _build_device(self, node: Dict[str, Any]) -> KernelBlockDevice:
        name = node.get("name", "")
        transport = node.get("tran")
        partitions, mountpoints = parse_partitions(node)
        nvme = is_nvme_device(name, transport)

        sysfs_pcie = controller_pcie = None
        if nvme:
            sysfs_pcie = resolve_block_pcie(self.settings.sysfs_root, name)
            if not sysfs_pcie:
                controller_pcie = resolve_controller_pcie(self.settings.sysfs_root, name)

        return KernelBlockDevice(
            name=name,
            device_path=f"/dev/{name}",
            size_bytes=to_int(node.get("size")) or 0,
            transport=transport,
            model=node.get("model"),
            serial=node.get("serial"),
            vendor=node.get("vendor"),
            rotational=to_bool(node.get("rota")),
            readonly=to_bool(node.get("ro")),
            removable=to_bool(node.get("rm")),
            hotplug=to_bool(node.get("hotplug")),
            physical_sector_size=to_int(node.get("phy-sec")),
            logical_sector_size=to_int(node.get("log-sec")),
            partitions=partitions,
            mountpoints=mountpoints,
            fstype=node.get("fstype"),
            uuid=node.get("uuid"),
            part_uuid=node.get("partuuid"),
            is_nvme=nvme,
            sysfs_pcie_addr=sysfs_pcie,
            controller_pcie_addr=controller_pcie,
        )

    def _collect(self) -> List[KernelBlockDevice]:
        return [
            self._build_device(node)
            for node in self.list_block_devices()
            if node.get("type") == "disk"
        ]
