"""
Typed SPDK operations built on top of SpdkRpcClient.

Each operation is a small builder returning an RpcCall that knows the exact
parameter shape its method expects (omitted, object, or bare value).
Errors from the transport propagate unchanged.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from spdk_manager.errors import EngineError
from spdk_manager.models.bdev import DriverKind, EngineBdev
from spdk_manager.services.rpc_client import SpdkRpcClient

logger = logging.getLogger(__name__)

# lvstore creation and deletion scan the whole base bdev
LVSTORE_CREATE_TIMEOUT_SECONDS = 180.0
LVSTORE_DELETE_TIMEOUT_SECONDS = 120.0

_STRIPED_RAID_LEVELS = {"raid0", "raid5f"}
_NAMESPACE_SUFFIX = re.compile(r"n\d+$")


@dataclass(frozen=True)
class RpcCall:
    method: str
    params: Any = None
    timeout: Optional[float] = None


def _without_none(**params: Any) -> Dict[str, Any]:
    return {key: value for key, value in params.items() if value is not None}


# ---- builders -------------------------------------------------------------


def get_bdevs_call(name: Optional[str] = None) -> RpcCall:
    return RpcCall("bdev_get_bdevs", _without_none(name=name) or None)


def attach_nvme_controller_call(
    name: str,
    trtype: str,
    traddr: str,
    adrfam: Optional[str] = None,
    trsvcid: Optional[str] = None,
) -> RpcCall:
    return RpcCall(
        "bdev_nvme_attach_controller",
        _without_none(name=name, trtype=trtype, traddr=traddr, adrfam=adrfam, trsvcid=trsvcid),
    )


def create_raid_call(
    name: str,
    raid_level: str,
    base_bdevs: Sequence[str],
    strip_size_kb: Optional[int] = None,
) -> RpcCall:
    params: Dict[str, Any] = {
        "name": name,
        "raid_level": raid_level,
        "base_bdevs": list(base_bdevs),
    }
    # raid1 mirrors whole bdevs and rejects a strip size
    if raid_level in _STRIPED_RAID_LEVELS and strip_size_kb:
        params["strip_size_kb"] = strip_size_kb
    return RpcCall("bdev_raid_create", params)


def create_lvstore_call(bdev_name: str, lvs_name: str, cluster_sz: Optional[int] = None) -> RpcCall:
    return RpcCall(
        "bdev_lvol_create_lvstore",
        _without_none(bdev_name=bdev_name, lvs_name=lvs_name, cluster_sz=cluster_sz),
        timeout=LVSTORE_CREATE_TIMEOUT_SECONDS,
    )


def create_lvol_call(
    lvstore_uuid: str,
    lvol_name: str,
    size_in_mib: int,
    thin_provision: bool = True,
    clear_method: Optional[str] = None,
) -> RpcCall:
    # the store is addressed as ``uuid`` here, not ``lvol_store_uuid``
    return RpcCall(
        "bdev_lvol_create",
        _without_none(
            uuid=lvstore_uuid,
            lvol_name=lvol_name,
            size_in_mib=size_in_mib,
            thin_provision=thin_provision,
            clear_method=clear_method,
        ),
    )


def clone_bdev_call(bdev_name: str, clone_name: str, lvstore_name: str) -> RpcCall:
    # external clones name the store ``lvs_name`` and the source ``bdev``
    return RpcCall(
        "bdev_lvol_clone_bdev",
        {"bdev": bdev_name, "clone_name": clone_name, "lvs_name": lvstore_name},
    )


def listener_call(
    method: str,
    nqn: str,
    trtype: str,
    traddr: str,
    trsvcid: str,
    adrfam: str = "ipv4",
) -> RpcCall:
    return RpcCall(
        method,
        {
            "nqn": nqn,
            "listen_address": {
                "trtype": trtype,
                "traddr": traddr,
                "trsvcid": trsvcid,
                "adrfam": adrfam,
            },
        },
    )


def add_namespace_call(
    nqn: str,
    bdev_name: str,
    nsid: Optional[int] = None,
    uuid: Optional[str] = None,
) -> RpcCall:
    namespace = _without_none(bdev_name=bdev_name, nsid=nsid, uuid=uuid)
    return RpcCall("nvmf_subsystem_add_ns", {"nqn": nqn, "namespace": namespace})


# ---- catalog --------------------------------------------------------------


class SpdkOperations:
    """Engine operations used by the inventory and by direct management calls."""

    def __init__(self, client: SpdkRpcClient) -> None:
        self.client = client

    def execute(self, call: RpcCall) -> Any:
        return self.client.call(call.method, call.params, timeout=call.timeout)

    def _call(self, method: str, params: Any = None) -> Any:
        return self.execute(RpcCall(method, params))

    def check_connection(self) -> bool:
        return self.client.check_connection()

    # bdevs

    def get_bdevs(self, name: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.execute(get_bdevs_call(name)) or []

    def attach_nvme_controller(
        self,
        name: str,
        trtype: str,
        traddr: str,
        adrfam: Optional[str] = None,
        trsvcid: Optional[str] = None,
    ) -> Any:
        return self.execute(attach_nvme_controller_call(name, trtype, traddr, adrfam, trsvcid))

    def detach_nvme_controller(self, name: str) -> Any:
        return self._call("bdev_nvme_detach_controller", {"name": name})

    def create_malloc_bdev(self, name: str, num_blocks: int, block_size: int = 512) -> Any:
        return self._call(
            "bdev_malloc_create",
            {"name": name, "num_blocks": num_blocks, "block_size": block_size},
        )

    def create_aio_bdev(self, name: str, filename: str, block_size: int = 512) -> Any:
        return self._call(
            "bdev_aio_create",
            {"name": name, "filename": filename, "block_size": block_size},
        )

    def delete_aio_bdev(self, name: str) -> Any:
        return self._call("bdev_aio_delete", {"name": name})

    def delete_nvme_bdev(self, name: str) -> Any:
        return self.detach_nvme_controller(name)

    def delete_malloc_bdev(self, name: str) -> Any:
        return self._call("bdev_malloc_delete", {"name": name})

    def delete_null_bdev(self, name: str) -> Any:
        return self._call("bdev_null_delete", {"name": name})

    def delete_rbd_bdev(self, name: str) -> Any:
        return self._call("bdev_rbd_delete", {"name": name})

    def delete_bdev(self, name: str) -> DriverKind:
        """
        Delete a bdev with the method matching its driver kind.

        NVMe namespace bdevs (``nvme0n1``) detach their controller (``nvme0``).
        Raises LookupError if the bdev does not exist and ValueError if its kind
        cannot be deleted directly.
        """
        matches = [EngineBdev.from_rpc(raw) for raw in self.get_bdevs() if raw.get("name") == name]
        if not matches:
            raise LookupError(f"Bdev '{name}' not found")
        kind = matches[0].driver.kind

        if kind is DriverKind.NVME:
            self.delete_nvme_bdev(_NAMESPACE_SUFFIX.sub("", name))
        elif kind is DriverKind.AIO:
            self.delete_aio_bdev(name)
        elif kind is DriverKind.MALLOC:
            self.delete_malloc_bdev(name)
        elif kind is DriverKind.NULL:
            self.delete_null_bdev(name)
        elif kind is DriverKind.LVOL:
            self.delete_lvol(name)
        elif kind is DriverKind.RBD:
            self.delete_rbd_bdev(name)
        elif kind is DriverKind.RAID:
            raise ValueError(f"Bdev '{name}' is a RAID volume; delete it with delete_raid")
        else:
            raise ValueError(f"Cannot determine bdev type for '{name}'")

        logger.info("Bdev deleted: %s (type: %s)", name, kind.value)
        return kind

    # raid

    def create_raid(
        self,
        name: str,
        raid_level: str,
        base_bdevs: Sequence[str],
        strip_size_kb: Optional[int] = None,
    ) -> Any:
        return self.execute(create_raid_call(name, raid_level, base_bdevs, strip_size_kb))

    def delete_raid(self, name: str) -> Any:
        return self._call("bdev_raid_delete", {"name": name})

    def get_raid_bdevs(self, category: str = "all") -> List[Dict[str, Any]]:
        """
        List RAID volumes.

        Falls back to filtering ``bdev_get_bdevs`` when the engine rejects
        ``bdev_raid_get_bdevs``.
        """
        try:
            return self._call("bdev_raid_get_bdevs", category) or []
        except EngineError as exc:
            logger.warning("bdev_raid_get_bdevs failed, using fallback method: %s", exc.message)

        raids: List[Dict[str, Any]] = []
        for raw in self.get_bdevs():
            bdev = EngineBdev.from_rpc(raw)
            if bdev.driver.kind is not DriverKind.RAID:
                continue
            if isinstance(bdev.driver.data, dict):
                raids.append(
                    {
                        "name": bdev.name,
                        **bdev.driver.data,
                        "block_size": bdev.block_size,
                        "num_blocks": bdev.num_blocks,
                        "claimed": bdev.claimed,
                    }
                )
            else:
                raids.append(raw)
        return raids

    def add_raid_base_bdev(self, raid_bdev: str, base_bdev: str) -> Any:
        return self._call("bdev_raid_add_base_bdev", {"raid_bdev": raid_bdev, "base_bdev": base_bdev})

    def remove_raid_base_bdev(self, raid_bdev: str, base_bdev: str) -> Any:
        return self._call(
            "bdev_raid_remove_base_bdev",
            {"raid_bdev": raid_bdev, "base_bdev": base_bdev},
        )

    # lvstores

    def create_lvstore(self, bdev_name: str, lvs_name: str, cluster_sz: Optional[int] = None) -> Any:
        return self.execute(create_lvstore_call(bdev_name, lvs_name, cluster_sz))

    def rename_lvstore(self, old_name: str, new_name: str) -> Any:
        return self._call("bdev_lvol_rename_lvstore", {"old_name": old_name, "new_name": new_name})

    def grow_lvstore(self, uuid: str) -> Any:
        return self._call("bdev_lvol_grow_lvstore", {"uuid": uuid})

    def delete_lvstore(self, uuid: str) -> Any:
        return self.execute(
            RpcCall(
                "bdev_lvol_delete_lvstore",
                {"uuid": uuid},
                timeout=LVSTORE_DELETE_TIMEOUT_SECONDS,
            )
        )

    def get_lvstores(self) -> List[Dict[str, Any]]:
        return self._call("bdev_lvol_get_lvstores") or []

    # lvols

    def get_lvols(self) -> List[Dict[str, Any]]:
        return self._call("bdev_lvol_get_lvols") or []

    def create_lvol(
        self,
        lvstore_uuid: str,
        lvol_name: str,
        size_in_mib: int,
        thin_provision: bool = True,
        clear_method: Optional[str] = None,
    ) -> Any:
        return self.execute(
            create_lvol_call(lvstore_uuid, lvol_name, size_in_mib, thin_provision, clear_method)
        )

    def snapshot_lvol(self, lvol_name: str, snapshot_name: str) -> Any:
        return self._call(
            "bdev_lvol_snapshot",
            {"lvol_name": lvol_name, "snapshot_name": snapshot_name},
        )

    def clone_lvol(self, snapshot_name: str, clone_name: str) -> Any:
        return self._call(
            "bdev_lvol_clone",
            {"snapshot_name": snapshot_name, "clone_name": clone_name},
        )

    def clone_bdev(self, bdev_name: str, clone_name: str, lvstore_name: str) -> Any:
        return self.execute(clone_bdev_call(bdev_name, clone_name, lvstore_name))

    def rename_lvol(self, old_name: str, new_name: str) -> Any:
        return self._call("bdev_lvol_rename", {"old_name": old_name, "new_name": new_name})

    def inflate_lvol(self, name: str) -> Any:
        return self._call("bdev_lvol_inflate", {"name": name})

    def decouple_lvol_parent(self, name: str) -> Any:
        return self._call("bdev_lvol_decouple_parent", {"name": name})

    def resize_lvol(self, name: str, size_in_mib: int) -> Any:
        return self._call("bdev_lvol_resize", {"name": name, "size_in_mib": size_in_mib})

    def set_lvol_read_only(self, name: str) -> Any:
        return self._call("bdev_lvol_set_read_only", {"name": name})

    def delete_lvol(self, name: str) -> Any:
        return self._call("bdev_lvol_delete", {"name": name})

    def start_lvol_shallow_copy(self, src_lvol_name: str, dst_bdev_name: str) -> Any:
        return self._call(
            "bdev_lvol_start_shallow_copy",
            {"src_lvol_name": src_lvol_name, "dst_bdev_name": dst_bdev_name},
        )

    def check_lvol_shallow_copy(self, name: str) -> Any:
        return self._call("bdev_lvol_check_shallow_copy", {"name": name})

    def set_lvol_parent(self, name: str, parent_name: str) -> Any:
        return self._call("bdev_lvol_set_parent", {"name": name, "parent_name": parent_name})

    def set_lvol_parent_bdev(self, name: str, parent_bdev_name: str) -> Any:
        return self._call(
            "bdev_lvol_set_parent_bdev",
            {"name": name, "parent_bdev_name": parent_bdev_name},
        )

    # NVMe-oF target

    def create_transport(
        self,
        trtype: str,
        tgt_name: Optional[str] = None,
        trsvcid: Optional[str] = None,
    ) -> Any:
        return self._call(
            "nvmf_create_transport",
            _without_none(trtype=trtype, tgt_name=tgt_name, trsvcid=trsvcid),
        )

    def get_transports(self) -> List[Dict[str, Any]]:
        return self._call("nvmf_get_transports") or []

    def create_subsystem(
        self,
        nqn: str,
        allow_any_host: bool = True,
        serial_number: Optional[str] = None,
        model_number: Optional[str] = None,
    ) -> Any:
        return self._call(
            "nvmf_create_subsystem",
            _without_none(
                nqn=nqn,
                allow_any_host=allow_any_host,
                serial_number=serial_number,
                model_number=model_number,
            ),
        )

    def delete_subsystem(self, nqn: str) -> Any:
        return self._call("nvmf_delete_subsystem", {"nqn": nqn})

    def get_subsystems(self) -> List[Dict[str, Any]]:
        return self._call("nvmf_get_subsystems") or []

    def add_listener(self, nqn: str, trtype: str, traddr: str, trsvcid: str, adrfam: str = "ipv4") -> Any:
        return self.execute(
            listener_call("nvmf_subsystem_add_listener", nqn, trtype, traddr, trsvcid, adrfam)
        )

    def remove_listener(
        self,
        nqn: str,
        trtype: str,
        traddr: str,
        trsvcid: str,
        adrfam: str = "ipv4",
    ) -> Any:
        return self.execute(
            listener_call("nvmf_subsystem_remove_listener", nqn, trtype, traddr, trsvcid, adrfam)
        )

    def add_namespace(
        self,
        nqn: str,
        bdev_name: str,
        nsid: Optional[int] = None,
        uuid: Optional[str] = None,
    ) -> Any:
        return self.execute(add_namespace_call(nqn, bdev_name, nsid, uuid))

    def remove_namespace(self, nqn: str, nsid: int) -> Any:
        return self._call("nvmf_subsystem_remove_ns", {"nqn": nqn, "nsid": nsid})

    def add_host(self, nqn: str, host_nqn: str) -> Any:
        return self._call("nvmf_subsystem_add_host", {"nqn": nqn, "host": host_nqn})

    def remove_host(self, nqn: str, host_nqn: str) -> Any:
        return self._call("nvmf_subsystem_remove_host", {"nqn": nqn, "host": host_nqn})

    def get_subsystem_controllers(self, nqn: str) -> Any:
        return self._call("nvmf_subsystem_get_controllers", {"nqn": nqn})

    def get_subsystem_qpairs(self, nqn: str) -> Any:
        return self._call("nvmf_subsystem_get_qpairs", {"nqn": nqn})

    def set_allow_any_host(self, nqn: str, allow_any_host: bool) -> Any:
        return self._call(
            "nvmf_subsystem_allow_any_host",
            {"nqn": nqn, "allow_any_host": allow_any_host},
        )

    def get_subsystem_namespaces(self, nqn: str) -> List[Dict[str, Any]]:
        for subsystem in self.get_subsystems():
            if subsystem.get("nqn") == nqn:
                return subsystem.get("namespaces") or []
        return []

    # configuration and system

    def get_version(self) -> Any:
        return self._call("spdk_get_version")

    def save_config(self, filename: Optional[str] = None) -> Any:
        return self._call("save_config", _without_none(filename=filename) or None)

    def load_config(self, filename: str) -> Any:
        return self._call("load_config", {"filename": filename})

    def get_framework_config(self) -> Any:
        return self._call("framework_get_config")

    def get_system_info(self) -> Dict[str, Any]:
        bdevs = self.get_bdevs()
        subsystems = self.get_subsystems()
        transports = self.get_transports()
        return {
            "version": self.get_version(),
            "bdev_count": len(bdevs),
            "subsystem_count": len(subsystems),
            "transport_count": len(transports),
            "socket_path": self.client.socket_path,
        }

    def get_full_config(self) -> Dict[str, Any]:
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "spdk_version": self.get_version(),
            "bdevs": self.get_bdevs(),
            "nvmf": {
                "transports": self.get_transports(),
                "subsystems": self.get_subsystems(),
            },
        }
