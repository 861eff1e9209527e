from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Partition(BaseModel):
    """A partition of a disk, as reported by lsblk."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Partition name, e.g. nvme0n1p1")
    device_path: str = Field(..., description="Device node, e.g. /dev/nvme0n1p1")
    size: Optional[int] = Field(None, ge=0, description="Partition size in bytes")
    mountpoint: Optional[str] = Field(None, description="Mountpoint if mounted")
    fstype: Optional[str] = Field(None, description="Filesystem type")
    uuid: Optional[str] = Field(None, description="Filesystem UUID")
    part_uuid: Optional[str] = Field(None, description="Partition UUID")


class NvmeNamespaceInfo(BaseModel):
    """Namespace figures reported by nvme-cli."""

    model_config = ConfigDict(frozen=True)

    namespace_id: Optional[int] = None
    used_bytes: Optional[int] = None
    maximum_lba: Optional[int] = None


class NvmeDiscoveryInfo(BaseModel):
    """Controller details recovered by the out-of-band discovery probe."""

    model_config = ConfigDict(frozen=True)

    pcie_addr: str = Field(..., description="PCIe address, e.g. 0000:00:04.0")
    vendor_id: Optional[str] = None
    subsystem_vendor_id: Optional[str] = None
    firmware_version: Optional[str] = None
    namespace_count: Optional[int] = None
    max_namespaces: Optional[int] = None
    transport_type: Optional[str] = None
    discovery_capacity_gb: Optional[float] = None
    discovery_capacity_bytes: Optional[int] = None


class SpdkBdevInfo(BaseModel):
    """The SPDK bdev that owns a disk."""

    model_config = ConfigDict(frozen=True)

    bdev_name: str = Field(..., description="Bdev name")
    driver_kind: str = Field(..., description="Driver kind, e.g. nvme or aio")
    bdev_type: Optional[str] = Field(None, description="SPDK product name")
    block_size: int = Field(..., ge=0)
    num_blocks: int = Field(..., ge=0)
    size_bytes: int = Field(..., ge=0, description="block_size * num_blocks")
    uuid: Optional[str] = None
    driver_specific: Dict[str, Any] = Field(
        default_factory=dict,
        description="Raw driver_specific payload",
    )


class Device(BaseModel):
    """
    One entry of the unified disk inventory.

    Built fresh for every inventory request and never mutated afterwards.
    ``identity_key`` is the internal deduplication key and is excluded from
    serialisation.
    """

    model_config = ConfigDict(frozen=True)

    identity_key: str = Field(..., exclude=True)
    name: str = Field(..., description="Raw device name, e.g. nvme0n1 or sda")
    display_name: str = Field(
        ...,
        description="PCIe address for kernel NVMe disks with a resolved address, else the name",
    )
    kernel_mode: bool = Field(
        ...,
        description="True if an in-kernel block driver owns the device",
    )
    device_path: Optional[str] = Field(
        None,
        description="Block device node; None for user-space NVMe controllers",
    )
    type: Literal["block", "nvme"] = Field(..., description="Device class")
    size: str = Field("0B", description="Human readable size")
    size_bytes: int = Field(0, ge=0, description="Size in bytes")
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
    partitions: List[Partition] = Field(default_factory=list)
    mountpoints: List[str] = Field(default_factory=list)
    fstype: Optional[str] = None
    uuid: Optional[str] = None
    part_uuid: Optional[str] = None
    nvme_info: Optional[NvmeNamespaceInfo] = None
    pcie_addr: Optional[str] = Field(None, description="PCIe address for NVMe devices")
    is_mounted: bool = False
    is_spdk_bdev: bool = False
    spdk_bdev_info: Optional[SpdkBdevInfo] = None
    nvme_discovery_info: Optional[NvmeDiscoveryInfo] = Field(
        None,
        description="Discovery probe details; only for user-space NVMe devices",
    )

    @model_validator(mode="before")
    @classmethod
    def enforce_invariants(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("kernel_mode"):
            data["nvme_discovery_info"] = None
        if data.get("device_path") is None:
            data["is_mounted"] = False
        return data


class DiskStats(BaseModel):
    """Counts and capacity sums over one unified inventory."""

    total: int = Field(..., ge=0)
    mounted: int = Field(..., ge=0)
    engine_owned: int = Field(..., ge=0)
    available: int = Field(..., ge=0)
    nvme_count: int = Field(..., ge=0)
    block_count: int = Field(..., ge=0)
    total_capacity_bytes: int = Field(..., ge=0)
    available_capacity_bytes: int = Field(..., ge=0)
    rotational_count: int = Field(..., ge=0)
    solid_state_count: int = Field(..., ge=0)


class DiskHealth(BaseModel):
    """SMART pass/fail verdict for one disk."""

    status: Literal["healthy", "unhealthy", "unknown", "error"]
    message: str
