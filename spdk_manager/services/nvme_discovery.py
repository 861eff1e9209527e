"""
Out-of-band NVMe discovery.

The probe enumerates controllers straight from PCIe, which is the only way
to identify drives that SPDK has taken away from the kernel. When SPDK
holds the hardware exclusively the probe fails in a few well-known ways;
those are listed in BENIGN_STDERR_PATTERNS and count as "nothing found".
"""

import json
import logging
import re
import subprocess
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from spdk_manager.config import Settings
from spdk_manager.errors import CollectorError
from spdk_manager.models.sources import DiscoveredNvmeDevice, DiscoveryResult
from spdk_manager.services.collector import Collector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BenignPattern:
    name: str
    pattern: "re.Pattern[str]"

    def matches(self, stderr: str) -> bool:
        return bool(self.pattern.search(stderr))


BENIGN_STDERR_PATTERNS = (
    BenignPattern("device-locked", re.compile(r"cannot create lock on device", re.IGNORECASE)),
    BenignPattern("permission-denied", re.compile(r"permission denied", re.IGNORECASE)),
    BenignPattern("no-controllers", re.compile(r"no (nvme )?controllers found", re.IGNORECASE)),
)


def match_benign(stderr: Optional[str]) -> Optional[BenignPattern]:
    if not stderr:
        return None
    for pattern in BENIGN_STDERR_PATTERNS:
        if pattern.matches(stderr):
            return pattern
    return None


def empty_result() -> DiscoveryResult:
    return DiscoveryResult(nvme_devices=[], total_devices=0, timestamp=int(time.time()))


def parse_report(report: Any) -> DiscoveryResult:
    """
    Build a DiscoveryResult from the probe's decoded JSON.

    Records are validated one by one; a malformed record is logged and
    skipped so the remaining controllers still reach the inventory.
    """
    if not isinstance(report, dict):
        logger.warning("Discovery output is not a JSON object, ignoring it")
        return empty_result()

    devices: List[DiscoveredNvmeDevice] = []
    for index, raw in enumerate(report.get("nvme_devices") or []):
        try:
            devices.append(DiscoveredNvmeDevice.model_validate(raw))
        except ValidationError as exc:
            logger.warning("Skipping malformed discovery record %d: %s", index, exc)

    total = report.get("total_devices")
    timestamp = report.get("timestamp")
    return DiscoveryResult(
        nvme_devices=devices,
        total_devices=total if isinstance(total, int) and not isinstance(total, bool) else len(devices),
        timestamp=timestamp if isinstance(timestamp, int) else int(time.time()),
    )


def summarize(result: DiscoveryResult) -> Dict[str, Any]:
    """Short per-controller overview of a discovery run."""
    return {
        "total_devices": result.total_devices,
        "total_capacity_gb": sum(device.total_capacity_gb or 0.0 for device in result.nvme_devices),
        "devices": [
            {
                "pcie_addr": device.pcie_addr,
                "model": device.model_number,
                "capacity_gb": round(device.total_capacity_gb or 0.0, 2),
                "status": "active" if (device.namespace_count or 0) > 0 else "inactive",
            }
            for device in result.nvme_devices
        ],
    }


class DiscoveryToolCollector(Collector):
    """Runs the discovery probe and parses its JSON report."""

    source_name = "discovered NVMe devices"

    def __init__(self, settings: Settings) -> None:
        self.tool_path = settings.discovery_tool_path
        self.timeout_seconds = settings.discovery_timeout_seconds

    def run_discovery(self) -> DiscoveryResult:
        """
        Execute the probe once.

        Benign stderr patterns and unparsable stdout both yield an empty
        result. Raises CollectorError for any other failure.
        """
        try:
            result = subprocess.run(
                [self.tool_path],
                check=False,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except FileNotFoundError as exc:
            raise CollectorError(f"NVMe discovery tool not found: {self.tool_path}") from exc
        except subprocess.TimeoutExpired as exc:
            raise CollectorError(
                f"NVMe discovery timed out after {self.timeout_seconds}s"
            ) from exc

        stderr = (result.stderr or "").strip()
        if result.returncode != 0:
            benign = match_benign(stderr)
            if benign is not None:
                logger.info(
                    "NVMe discovery reported %s, devices are likely claimed by SPDK; "
                    "returning empty result",
                    benign.name,
                )
                return empty_result()
            raise CollectorError(
                f"Discovery tool failed with return code {result.returncode}: {stderr}"
            )

        if stderr:
            logger.warning("NVMe discovery warnings: %s", stderr)

        try:
            report = json.loads(result.stdout)
        except ValueError as exc:
            logger.warning("Failed to parse discovery output: %s", exc)
            return empty_result()

        discovered = parse_report(report)
        logger.info("NVMe discovery found %s devices", discovered.total_devices)
        return discovered

    def _collect(self) -> List[DiscoveredNvmeDevice]:
        return list(self.run_discovery().nvme_devices)
