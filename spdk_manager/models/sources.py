"""
Raw records produced by the inventory sources, before reconciliation.

Text fields are whitespace-trimmed and empty strings or the ``Unknown``
placeholder become None, so the reconciler can compare them directly.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from spdk_manager.models.disk import Partition

_PLACEHOLDERS = {"", "unknown", "n/a"}


def clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in _PLACEHOLDERS:
        return None
    return text


def clean_pcie(value: Any) -> Optional[str]:
    text = clean_text(value)
    return text.lower() if text else None


class KernelBlockDevice(BaseModel):
    """A ``disk`` entry from lsblk, with sysfs PCIe candidates for NVMe disks."""

    name: str
    device_path: str
    size_bytes: int = Field(0, ge=0)
    transport: Optional[str] = None
    model: Optional[str] = None
    serial: Optional[str] = None
    vendor: Optional[str] = None
    rotational: bool = False
    readonly: bool = False
    removable: bool = False
    hotplug: bool = False
    physical_sector_size: Optional[int] = None
    logical_sector_size: Optional[int] = None
    partitions: List[Partition] = Field(default_factory=list)
    mountpoints: List[str] = Field(default_factory=list)
    fstype: Optional[str] = None
    uuid: Optional[str] = None
    part_uuid: Optional[str] = None
    is_nvme: bool = False
    sysfs_pcie_addr: Optional[str] = Field(
        None,
        description="Address found on the block device's own sysfs link chain",
    )
    controller_pcie_addr: Optional[str] = Field(
        None,
        description="Address found on the parent controller's sysfs link chain",
    )

    @field_validator(
        "transport", "model", "serial", "vendor", "fstype", "uuid", "part_uuid",
        mode="before",
    )
    @classmethod
    def normalize_text(cls, value: Any) -> Optional[str]:
        return clean_text(value)

    @field_validator("sysfs_pcie_addr", "controller_pcie_addr", mode="before")
    @classmethod
    def normalize_pcie(cls, value: Any) -> Optional[str]:
        return clean_pcie(value)


class VendorNvmeDevice(BaseModel):
    """One namespace listed by ``nvme list -o json``."""

    name: str
    device_path: str
    model: Optional[str] = None
    serial: Optional[str] = None
    vendor: Optional[str] = None
    firmware: Optional[str] = None
    size_bytes: int = Field(0, ge=0)
    sector_size: Optional[int] = None
    namespace_id: Optional[int] = None
    used_bytes: Optional[int] = None
    maximum_lba: Optional[int] = None
    transport_address: Optional[str] = Field(
        None,
        description="Transport/address text from the listing, may embed a PCIe address",
    )
    partitions: List[Partition] = Field(default_factory=list)
    mountpoints: List[str] = Field(default_factory=list)
    fstype: Optional[str] = None
    uuid: Optional[str] = None
    part_uuid: Optional[str] = None

    @field_validator(
        "model", "serial", "vendor", "firmware", "transport_address",
        "fstype", "uuid", "part_uuid",
        mode="before",
    )
    @classmethod
    def normalize_text(cls, value: Any) -> Optional[str]:
        return clean_text(value)


class DiscoveredNvmeDevice(BaseModel):
    """One controller reported by the discovery probe."""

    pcie_addr: Optional[str] = None
    vendor_id: Optional[str] = None
    subsystem_vendor_id: Optional[str] = None
    serial_number: Optional[str] = None
    model_number: Optional[str] = None
    firmware_version: Optional[str] = None
    total_capacity_bytes: Optional[int] = None
    total_capacity_gb: Optional[float] = None
    namespace_count: Optional[int] = None
    max_namespaces: Optional[int] = None
    transport_type: Optional[str] = None

    @field_validator(
        "vendor_id", "subsystem_vendor_id", "serial_number", "model_number",
        "firmware_version", "transport_type",
        mode="before",
    )
    @classmethod
    def normalize_text(cls, value: Any) -> Optional[str]:
        return clean_text(value)

    @field_validator("pcie_addr", mode="before")
    @classmethod
    def normalize_pcie(cls, value: Any) -> Optional[str]:
        return clean_pcie(value)


class DiscoveryResult(BaseModel):
    """Parsed stdout of the discovery probe."""

    nvme_devices: List[DiscoveredNvmeDevice] = Field(default_factory=list)
    total_devices: int = 0
    timestamp: Optional[int] = None
