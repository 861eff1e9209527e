from typing import List

import psutil

from spdk_manager.services.collector import Collector


class MountTableCollector(Collector):
    """Device column of the live mount table."""

    source_name = "mount info"

    def _collect(self) -> List[str]:
        return [part.device for part in psutil.disk_partitions(all=True) if part.device]
