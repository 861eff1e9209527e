"""
Merge the inventory sources into one deduplicated list of devices.

The merge runs on a snapshot that has already been collected, touches no
I/O and keeps no state between calls, so the same snapshot always yields
the same devices.

Identity keys:
    nvme:<pcie_addr>            NVMe device with a known PCIe address
    device:<device_path>        kernel disk without a PCIe address
    user:<device_path>:<serial> nvme-cli namespace unknown to lsblk

When two sources produce the same key the earlier one keeps its identity
fields (kernel > nvme-cli > discovery); later ones only fill gaps.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from spdk_manager.models.bdev import DriverKind, EngineBdev
from spdk_manager.models.disk import (
    Device,
    NvmeDiscoveryInfo,
    NvmeNamespaceInfo,
    Partition,
    SpdkBdevInfo,
)
from spdk_manager.models.sources import (
    DiscoveredNvmeDevice,
    KernelBlockDevice,
    VendorNvmeDevice,
)
from spdk_manager.services.block_devices import find_pcie_address, format_size

logger = logging.getLogger(__name__)

# discovery match confidence, lower is better
TIER_PCIE = 1
TIER_MODEL_SERIAL = 2
TIER_MODEL_ONLY = 3


@dataclass
class SourceSnapshot:
    """Everything the sources returned for one inventory request."""

    kernel: List[KernelBlockDevice] = field(default_factory=list)
    vendor: List[VendorNvmeDevice] = field(default_factory=list)
    engine: List[EngineBdev] = field(default_factory=list)
    discovered: List[DiscoveredNvmeDevice] = field(default_factory=list)
    mounted_devices: List[str] = field(default_factory=list)


@dataclass
class _Draft:
    identity_key: str
    name: str
    display_name: str
    kernel_mode: bool
    device_path: Optional[str]
    type: str
    size_bytes: int = 0
    transport: Optional[str] = None
    model: Optional[str] = None
    vendor: Optional[str] = None
    serial: Optional[str] = None
    firmware: Optional[str] = None
    rotational: bool = False
    readonly: bool = False
    removable: bool = False
    hotplug: bool = False
    physical_sector_size: Optional[int] = None
    logical_sector_size: Optional[int] = None
    partitions: List[Partition] = field(default_factory=list)
    mountpoints: List[str] = field(default_factory=list)
    fstype: Optional[str] = None
    uuid: Optional[str] = None
    part_uuid: Optional[str] = None
    nvme_info: Optional[NvmeNamespaceInfo] = None
    pcie_addr: Optional[str] = None
    nvme_discovery_info: Optional[NvmeDiscoveryInfo] = None

    def fill_missing(self, **values) -> None:
        for attr, value in values.items():
            if value is not None and getattr(self, attr) in (None, 0, []):
                setattr(self, attr, value)


def _kernel_draft(disk: KernelBlockDevice, pcie_addr: Optional[str]) -> _Draft:
    if disk.is_nvme and pcie_addr:
        key = f"nvme:{pcie_addr}"
    else:
        key = f"device:{disk.device_path}"

    return _Draft(
        identity_key=key,
        name=disk.name,
        display_name=pcie_addr if (disk.is_nvme and pcie_addr) else disk.name,
        kernel_mode=True,
        device_path=disk.device_path,
        type="nvme" if disk.is_nvme else "block",
        size_bytes=disk.size_bytes,
        transport=disk.transport or ("nvme" if disk.is_nvme else None),
        model=disk.model,
        vendor=disk.vendor,
        serial=disk.serial,
        rotational=disk.rotational,
        readonly=disk.readonly,
        removable=disk.removable,
        hotplug=disk.hotplug,
        physical_sector_size=disk.physical_sector_size,
        logical_sector_size=disk.logical_sector_size,
        partitions=list(disk.partitions),
        mountpoints=list(disk.mountpoints),
        fstype=disk.fstype,
        uuid=disk.uuid,
        part_uuid=disk.part_uuid,
        pcie_addr=pcie_addr if disk.is_nvme else None,
    )


def _vendor_draft(record: VendorNvmeDevice, key: str, pcie_addr: Optional[str]) -> _Draft:
    return _Draft(
        identity_key=key,
        name=record.name,
        display_name=record.name,
        kernel_mode=False,
        device_path=record.device_path,
        type="nvme",
        size_bytes=record.size_bytes,
        transport="nvme",
        model=record.model,
        vendor=record.vendor,
        serial=record.serial,
        firmware=record.firmware,
        hotplug=True,
        physical_sector_size=record.sector_size or 512,
        logical_sector_size=record.sector_size or 512,
        partitions=list(record.partitions),
        mountpoints=list(record.mountpoints),
        fstype=record.fstype,
        uuid=record.uuid,
        part_uuid=record.part_uuid,
        nvme_info=_namespace_info(record),
        pcie_addr=pcie_addr,
    )


def _virtual_draft(record: DiscoveredNvmeDevice) -> _Draft:
    return _Draft(
        identity_key=f"nvme:{record.pcie_addr}",
        name=record.pcie_addr,
        display_name=record.pcie_addr,
        kernel_mode=False,
        device_path=None,
        type="nvme",
        size_bytes=record.total_capacity_bytes or 0,
        transport=record.transport_type or "pcie",
        model=record.model_number,
        serial=record.serial_number,
        firmware=record.firmware_version,
        pcie_addr=record.pcie_addr,
    )


def _namespace_info(record: VendorNvmeDevice) -> NvmeNamespaceInfo:
    return NvmeNamespaceInfo(
        namespace_id=record.namespace_id,
        used_bytes=record.used_bytes,
        maximum_lba=record.maximum_lba,
    )


def _discovery_info(record: DiscoveredNvmeDevice) -> NvmeDiscoveryInfo:
    return NvmeDiscoveryInfo(
        pcie_addr=record.pcie_addr,
        vendor_id=record.vendor_id,
        subsystem_vendor_id=record.subsystem_vendor_id,
        firmware_version=record.firmware_version,
        namespace_count=record.namespace_count,
        max_namespaces=record.max_namespaces,
        transport_type=record.transport_type,
        discovery_capacity_gb=record.total_capacity_gb,
        discovery_capacity_bytes=record.total_capacity_bytes,
    )


def resolve_kernel_pcie(
    disk: KernelBlockDevice,
    vendor_by_path: Dict[str, VendorNvmeDevice],
) -> Optional[str]:
    """Block link chain, then the nvme-cli transport text, then the controller link chain."""
    if not disk.is_nvme:
        return None
    if disk.sysfs_pcie_addr:
        return disk.sysfs_pcie_addr
    record = vendor_by_path.get(disk.device_path)
    from_vendor = find_pcie_address(record.transport_address) if record else None
    return from_vendor or disk.controller_pcie_addr


def match_discovery(
    draft: _Draft,
    discovered: Iterable[DiscoveredNvmeDevice],
) -> Tuple[Optional[DiscoveredNvmeDevice], Optional[int]]:
    """
    Find the discovery record describing a user-space NVMe device.

    Tiers are tried in order: PCIe address, (model, serial), and finally
    model alone when neither side has a serial number. The last tier is a
    guess and can pick the wrong drive when identical models are installed.
    """
    records = [record for record in discovered if record.pcie_addr]

    if draft.pcie_addr:
        for record in records:
            if record.pcie_addr == draft.pcie_addr:
                return record, TIER_PCIE

    if draft.model and draft.serial:
        for record in records:
            if record.model_number == draft.model and record.serial_number == draft.serial:
                return record, TIER_MODEL_SERIAL

    if draft.model and not draft.serial:
        for record in records:
            if not record.serial_number and record.model_number == draft.model:
                return record, TIER_MODEL_ONLY

    return None, None


def _is_same_or_partition(mounted: str, device_path: str) -> bool:
    if mounted == device_path:
        return True
    suffix = r"p\d+" if device_path[-1:].isdigit() else r"\d+"
    return re.fullmatch(re.escape(device_path) + suffix, mounted) is not None


def is_mounted(draft: _Draft, mounted_devices: Iterable[str]) -> bool:
    if draft.device_path is None:
        return False
    if draft.mountpoints:
        return True
    if any(partition.mountpoint for partition in draft.partitions):
        return True
    return any(_is_same_or_partition(mounted, draft.device_path) for mounted in mounted_devices)


def bdev_owns(bdev: EngineBdev, draft: _Draft) -> bool:
    """True if the SPDK bdev is backed by the device."""
    driver = bdev.driver

    if driver.kind is DriverKind.NVME:
        if draft.pcie_addr and draft.pcie_addr in driver.pci_addresses():
            return True
        if draft.device_path and bdev.name and driver.has_controller_identity():
            if bdev.name in draft.device_path or draft.name in bdev.name:
                return True

    if driver.kind is DriverKind.AIO and draft.device_path:
        if driver.aio_filename() == draft.device_path:
            return True

    for alias in bdev.aliases:
        if not alias:
            continue
        if draft.name and draft.name in alias:
            return True
        if draft.device_path and alias in draft.device_path:
            return True

    return False


def _bdev_info(bdev: EngineBdev) -> SpdkBdevInfo:
    return SpdkBdevInfo(
        bdev_name=bdev.name,
        driver_kind=bdev.driver.kind.value,
        bdev_type=bdev.product_name,
        block_size=bdev.block_size,
        num_blocks=bdev.num_blocks,
        size_bytes=bdev.size_bytes,
        uuid=bdev.uuid,
        driver_specific=bdev.driver_specific,
    )


def _finalize(draft: _Draft, snapshot: SourceSnapshot) -> Device:
    owner = next((bdev for bdev in snapshot.engine if bdev_owns(bdev, draft)), None)

    return Device(
        identity_key=draft.identity_key,
        name=draft.name,
        display_name=draft.display_name,
        kernel_mode=draft.kernel_mode,
        device_path=draft.device_path,
        type=draft.type,
        size=format_size(draft.size_bytes),
        size_bytes=draft.size_bytes,
        transport=draft.transport,
        model=draft.model,
        vendor=draft.vendor,
        serial=draft.serial,
        firmware=draft.firmware,
        rotational=draft.rotational,
        readonly=draft.readonly,
        removable=draft.removable,
        hotplug=draft.hotplug,
        physical_sector_size=draft.physical_sector_size,
        logical_sector_size=draft.logical_sector_size,
        partitions=draft.partitions,
        mountpoints=draft.mountpoints,
        fstype=draft.fstype,
        uuid=draft.uuid,
        part_uuid=draft.part_uuid,
        nvme_info=draft.nvme_info,
        pcie_addr=draft.pcie_addr,
        is_mounted=is_mounted(draft, snapshot.mounted_devices),
        is_spdk_bdev=owner is not None,
        spdk_bdev_info=_bdev_info(owner) if owner is not None else None,
        nvme_discovery_info=None if draft.kernel_mode else draft.nvme_discovery_info,
    )


def reconcile(snapshot: SourceSnapshot) -> List[Device]:
    """Build the unified inventory from one snapshot of all sources."""
    drafts: Dict[str, _Draft] = {}
    vendor_by_path = {record.device_path: record for record in snapshot.vendor}

    # 1. kernel disks
    for disk in snapshot.kernel:
        draft = _kernel_draft(disk, resolve_kernel_pcie(disk, vendor_by_path))
        if draft.identity_key in drafts:
            logger.warning(
                "Skipping kernel disk %s: %s already describes this controller",
                disk.name,
                draft.identity_key,
            )
            continue
        drafts[draft.identity_key] = draft

    # 2. nvme-cli namespaces that lsblk did not already report
    kernel_triples = {(disk.device_path, disk.serial, disk.model) for disk in snapshot.kernel}
    for record in snapshot.vendor:
        if (record.device_path, record.serial, record.model) in kernel_triples:
            continue

        pcie_addr = None
        if record.model and record.serial:
            pcie_addr = next(
                (
                    found.pcie_addr
                    for found in snapshot.discovered
                    if found.pcie_addr
                    and found.model_number == record.model
                    and found.serial_number == record.serial
                ),
                None,
            )
        key = f"nvme:{pcie_addr}" if pcie_addr else f"user:{record.device_path}:{record.serial or ''}"

        existing = drafts.get(key)
        if existing is not None:
            existing.fill_missing(
                model=record.model,
                serial=record.serial,
                vendor=record.vendor,
                firmware=record.firmware,
                nvme_info=_namespace_info(record),
            )
            continue
        drafts[key] = _vendor_draft(record, key, pcie_addr)

    # 3. controllers only the discovery probe can see
    for record in snapshot.discovered:
        if not record.pcie_addr:
            continue
        key = f"nvme:{record.pcie_addr}"
        if key not in drafts:
            drafts[key] = _virtual_draft(record)

    # 4. discovery details for user-space NVMe devices only
    for draft in drafts.values():
        if draft.kernel_mode:
            draft.nvme_discovery_info = None
            continue
        if draft.type != "nvme":
            continue

        record, tier = match_discovery(draft, snapshot.discovered)
        if record is None:
            continue
        draft.nvme_discovery_info = _discovery_info(record)
        draft.fill_missing(
            model=record.model_number,
            serial=record.serial_number,
            firmware=record.firmware_version,
        )
        if tier != TIER_MODEL_ONLY:
            draft.fill_missing(pcie_addr=record.pcie_addr)
        else:
            logger.debug(
                "Matched %s to discovered controller %s by model only",
                draft.name,
                record.pcie_addr,
            )

    # 5 + 6. mount state and SPDK ownership
    return [_finalize(draft, snapshot) for draft in drafts.values()]
