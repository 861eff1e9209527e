import asyncio
import json
import logging
import subprocess
from typing import Any, Dict, List, Optional

from spdk_manager.config import Settings
from spdk_manager.errors import CollectorError, DeviceNotFound
from spdk_manager.models.disk import Device, DiskHealth, DiskStats
from spdk_manager.models.sources import DiscoveryResult
from spdk_manager.services.block_devices import KernelBlockCollector
from spdk_manager.services.engine_inventory import EngineInventoryCollector
from spdk_manager.services.mount_table import MountTableCollector
from spdk_manager.services.nvme_cli import VendorNvmeCollector
from spdk_manager.services.nvme_discovery import DiscoveryToolCollector, empty_result
from spdk_manager.services.reconciler import SourceSnapshot, reconcile
from spdk_manager.services.rpc_catalog import SpdkOperations
from spdk_manager.services.stats import compute_stats, is_available

logger = logging.getLogger(__name__)


class DiskService:
    """
    Unified disk inventory.

    Every call re-reads all sources; nothing is cached between requests.
    """

    def __init__(
        self,
        settings: Settings,
        block_collector: KernelBlockCollector,
        vendor_collector: VendorNvmeCollector,
        engine_collector: EngineInventoryCollector,
        discovery_collector: DiscoveryToolCollector,
        mount_collector: MountTableCollector,
    ) -> None:
        self.settings = settings
        self.block_collector = block_collector
        self.vendor_collector = vendor_collector
        self.engine_collector = engine_collector
        self.discovery_collector = discovery_collector
        self.mount_collector = mount_collector

    @classmethod
    def from_settings(cls, settings: Settings, operations: SpdkOperations) -> "DiskService":
        block_collector = KernelBlockCollector(settings)
        return cls(
            settings=settings,
            block_collector=block_collector,
            vendor_collector=VendorNvmeCollector(settings, block_collector),
            engine_collector=EngineInventoryCollector(operations),
            discovery_collector=DiscoveryToolCollector(settings),
            mount_collector=MountTableCollector(),
        )

    async def collect_sources(self) -> SourceSnapshot:
        """Read all sources concurrently; a failed source contributes an empty list."""
        kernel, vendor, engine, discovered, mounted = await asyncio.gather(
            asyncio.to_thread(self.block_collector.collect),
            asyncio.to_thread(self.vendor_collector.collect),
            asyncio.to_thread(self.engine_collector.collect),
            asyncio.to_thread(self.discovery_collector.collect),
            asyncio.to_thread(self.mount_collector.collect),
        )
        return SourceSnapshot(
            kernel=kernel,
            vendor=vendor,
            engine=engine,
            discovered=discovered,
            mounted_devices=mounted,
        )

    async def get_unified_inventory(self) -> List[Device]:
        snapshot = await self.collect_sources()
        devices = reconcile(snapshot)
        logger.info(
            "Inventory: %d devices from %d kernel, %d nvme-cli, %d discovered, %d bdevs",
            len(devices),
            len(snapshot.kernel),
            len(snapshot.vendor),
            len(snapshot.discovered),
            len(snapshot.engine),
        )
        return devices

    async def get_stats(self) -> DiskStats:
        return compute_stats(await self.get_unified_inventory())

    async def get_available_devices(self) -> List[Device]:
        return [device for device in await self.get_unified_inventory() if is_available(device)]

    async def get_device(self, name_or_path: str) -> Device:
        """
        Look up one device by raw name, display name or device path.

        Raises DeviceNotFound if no device matches.
        """
        for device in await self.get_unified_inventory():
            if name_or_path in (device.name, device.display_name, device.device_path):
                return device
        raise DeviceNotFound(name_or_path)

    async def discover_nvme(self) -> DiscoveryResult:
        """Raw discovery probe output; failures degrade to an empty result."""
        try:
            return await asyncio.to_thread(self.discovery_collector.run_discovery)
        except CollectorError as exc:
            logger.warning("NVMe discovery failed, returning empty result: %s", exc)
            return empty_result()

    def _read_smart(self, device_path: str) -> Optional[Dict[str, Any]]:
        """
        Run ``smartctl -a -j`` on a device.

        smartctl encodes warnings in its exit status, so the JSON on stdout is
        used whatever the return code. Returns None if smartctl is missing or
        printed no JSON; raises CollectorError on timeout.
        """
        try:
            result = subprocess.run(
                [self.settings.smartctl_binary, "-a", "-j", device_path],
                check=False,
                capture_output=True,
                text=True,
                timeout=self.settings.command_timeout_seconds,
            )
        except FileNotFoundError:
            logger.warning("smartctl binary not found on host system")
            return None
        except subprocess.TimeoutExpired as exc:
            raise CollectorError(f"smartctl timed out for {device_path}") from exc

        try:
            report = json.loads(result.stdout)
        except ValueError:
            logger.warning("Could not get SMART info for %s: unparsable smartctl output", device_path)
            return None
        return report if isinstance(report, dict) else None

    async def get_smart_info(self, name_or_path: str) -> Optional[Dict[str, Any]]:
        device = await self.get_device(name_or_path)
        if device.device_path is None:
            return None
        try:
            return await asyncio.to_thread(self._read_smart, device.device_path)
        except CollectorError as exc:
            logger.warning("Could not get SMART info for %s: %s", device.name, exc)
            return None

    async def check_health(self, name_or_path: str) -> DiskHealth:
        """SMART pass/fail verdict. Raises DeviceNotFound for unknown disks."""
        device = await self.get_device(name_or_path)
        if device.device_path is None:
            return DiskHealth(status="unknown", message="SMART data not available")

        try:
            report = await asyncio.to_thread(self._read_smart, device.device_path)
        except CollectorError as exc:
            logger.warning("Health check failed for %s: %s", device.name, exc)
            return DiskHealth(status="error", message=str(exc))

        if report is None:
            return DiskHealth(status="unknown", message="SMART data not available")

        passed = (report.get("smart_status") or {}).get("passed")
        if passed is True:
            return DiskHealth(status="healthy", message="Disk is healthy")
        if passed is False:
            return DiskHealth(status="unhealthy", message="Disk health check failed")
        return DiskHealth(status="unknown", message="Could not determine disk health")
