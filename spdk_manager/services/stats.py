from typing import Iterable

from spdk_manager.models.disk import Device, DiskStats


def is_available(device: Device) -> bool:
    """A disk can be handed to SPDK: not mounted, not claimed, writable, fixed."""
    return not (
        device.is_mounted
        or device.is_spdk_bdev
        or device.readonly
        or device.removable
    )


def compute_stats(devices: Iterable[Device]) -> DiskStats:
    """Counts and capacity sums over a unified inventory."""
    inventory = list(devices)
    available = [device for device in inventory if is_available(device)]

    return DiskStats(
        total=len(inventory),
        mounted=sum(1 for device in inventory if device.is_mounted),
        engine_owned=sum(1 for device in inventory if device.is_spdk_bdev),
        available=len(available),
        nvme_count=sum(1 for device in inventory if device.type == "nvme"),
        block_count=sum(1 for device in inventory if device.type == "block"),
        total_capacity_bytes=sum(device.size_bytes for device in inventory),
        available_capacity_bytes=sum(device.size_bytes for device in available),
        rotational_count=sum(1 for device in inventory if device.rotational),
        solid_state_count=sum(1 for device in inventory if not device.rotational),
    )
