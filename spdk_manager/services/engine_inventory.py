from typing import List

from spdk_manager.models.bdev import EngineBdev
from spdk_manager.services.collector import Collector
from spdk_manager.services.rpc_catalog import SpdkOperations


class EngineInventoryCollector(Collector):
    """Bdevs currently managed by the SPDK target."""

    source_name = "SPDK bdevs"

    def __init__(self, operations: SpdkOperations) -> None:
        self.operations = operations

    def _collect(self) -> List[EngineBdev]:
        return [EngineBdev.from_rpc(raw) for raw in self.operations.get_bdevs()]
