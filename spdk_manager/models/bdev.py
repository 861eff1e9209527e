from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class DriverKind(str, Enum):
    """Closed set of SPDK bdev driver kinds, keyed by their driver_specific name."""

    NVME = "nvme"
    AIO = "aio"
    MALLOC = "malloc"
    NULL = "null"
    LVOL = "lvol"
    RBD = "rbd"
    RAID = "raid"
    UNKNOWN = "unknown"


_KNOWN_KINDS = {kind.value: kind for kind in DriverKind if kind is not DriverKind.UNKNOWN}

# Substrings of product_name used when driver_specific carries no kind key.
_PRODUCT_NAME_KINDS = (
    ("Malloc", DriverKind.MALLOC),
    ("NVMe", DriverKind.NVME),
    ("AIO", DriverKind.AIO),
    ("Null", DriverKind.NULL),
    ("Logical Volume", DriverKind.LVOL),
    ("LVol", DriverKind.LVOL),
    ("RBD", DriverKind.RBD),
    ("Raid Volume", DriverKind.RAID),
)


class DriverPayload(BaseModel):
    """The driver-specific section of a bdev, tagged by its driver kind."""

    kind: DriverKind = Field(..., description="Detected driver kind")
    data: Any = Field(
        None,
        description="The payload stored under the kind's key (dict or list)",
    )

    @classmethod
    def from_driver_specific(
        cls,
        driver_specific: Optional[Dict[str, Any]],
        product_name: Optional[str] = None,
    ) -> "DriverPayload":
        """
        Detect the driver kind of a bdev.

        Only keys naming a known driver are considered, so policy entries such
        as ``mp_policy`` never become a kind. Without a known key the
        product_name is consulted before falling back to UNKNOWN.
        """
        for key, value in (driver_specific or {}).items():
            kind = _KNOWN_KINDS.get(key)
            if kind is not None:
                return cls(kind=kind, data=value)

        if product_name:
            for needle, kind in _PRODUCT_NAME_KINDS:
                if needle in product_name:
                    return cls(kind=kind, data=None)

        return cls(kind=DriverKind.UNKNOWN, data=None)

    def _entries(self) -> List[Dict[str, Any]]:
        if isinstance(self.data, list):
            return [item for item in self.data if isinstance(item, dict)]
        if isinstance(self.data, dict):
            return [self.data]
        return []

    def pci_addresses(self) -> List[str]:
        """PCIe addresses of the controllers behind an nvme bdev."""
        if self.kind is not DriverKind.NVME:
            return []

        addresses: List[str] = []
        for entry in self._entries():
            pci = entry.get("pci_address")
            if isinstance(pci, str) and pci:
                addresses.append(pci.lower())
            trid = entry.get("trid")
            if isinstance(trid, dict) and str(trid.get("trtype", "")).lower() == "pcie":
                traddr = trid.get("traddr")
                if isinstance(traddr, str) and traddr:
                    addresses.append(traddr.lower())
        return addresses

    def has_controller_identity(self) -> bool:
        """True if an nvme payload names a PCI address or transport id."""
        return any(
            entry.get("pci_address") or entry.get("trid") for entry in self._entries()
        )

    def aio_filename(self) -> Optional[str]:
        if self.kind is not DriverKind.AIO:
            return None
        for entry in self._entries():
            filename = entry.get("filename")
            if isinstance(filename, str) and filename:
                return filename
        return None


class EngineBdev(BaseModel):
    """A block device as reported by ``bdev_get_bdevs``."""

    name: str = Field(..., description="Bdev name")
    aliases: List[str] = Field(default_factory=list, description="Alternate names")
    product_name: Optional[str] = Field(None, description="SPDK product name")
    block_size: int = Field(0, ge=0, description="Block size in bytes")
    num_blocks: int = Field(0, ge=0, description="Number of blocks")
    uuid: Optional[str] = Field(None, description="Bdev UUID")
    claimed: bool = Field(False, description="True if claimed by another bdev module")
    driver: DriverPayload = Field(..., description="Tagged driver payload")
    driver_specific: Dict[str, Any] = Field(
        default_factory=dict,
        description="Raw driver_specific object, passed through unchanged",
    )

    @property
    def size_bytes(self) -> int:
        return self.block_size * self.num_blocks

    @classmethod
    def from_rpc(cls, raw: Dict[str, Any]) -> "EngineBdev":
        driver_specific = raw.get("driver_specific") or {}
        if not isinstance(driver_specific, dict):
            driver_specific = {}
        product_name = raw.get("product_name")

        return cls(
            name=str(raw.get("name", "")),
            aliases=[str(alias) for alias in raw.get("aliases") or []],
            product_name=product_name,
            block_size=int(raw.get("block_size") or 0),
            num_blocks=int(raw.get("num_blocks") or 0),
            uuid=raw.get("uuid"),
            claimed=bool(raw.get("claimed", False)),
            driver=DriverPayload.from_driver_specific(driver_specific, product_name),
            driver_specific=driver_specific,
        )
