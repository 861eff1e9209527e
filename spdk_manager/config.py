from typing import Optional
import os

from pydantic import BaseModel, Field


class Settings(BaseModel):
    # SPDK target
    spdk_socket_path: str = Field(
        default="/var/tmp/spdk_tgt.sock",
        description="Filesystem path of the SPDK JSON-RPC Unix socket",
    )
    rpc_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Default per-call RPC timeout; single operations may override it",
    )

    # NVMe discovery probe
    discovery_tool_path: str = Field(
        default="/usr/bin/nvme_discover_json",
        description="Executable that prints discovered NVMe controllers as JSON",
    )
    discovery_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound for one discovery tool run",
    )

    # Host utilities
    command_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for lsblk, nvme-cli and smartctl invocations",
    )
    sysfs_root: str = Field(
        default="/sys",
        description="Root of the sysfs tree used to resolve PCIe addresses",
    )
    lsblk_binary: str = Field(default="lsblk", description="lsblk executable")
    nvme_binary: str = Field(default="nvme", description="nvme-cli executable")
    smartctl_binary: str = Field(default="smartctl", description="smartctl executable")

    # Logging
    log_level: str = Field(default="INFO", description="Root log level name")
    log_file: Optional[str] = Field(
        default=None,
        description="Optional log file, in addition to stdout",
    )

    @classmethod
    def from_env(cls) -> "Settings":
        # Unset variables fall back to the field defaults.
        env_map = {
            "spdk_socket_path": "SPDK_SOCKET_PATH",
            "rpc_timeout_seconds": "SPDK_RPC_TIMEOUT",
            "discovery_tool_path": "NVME_DISCOVERY_TOOL",
            "discovery_timeout_seconds": "NVME_DISCOVERY_TIMEOUT",
            "command_timeout_seconds": "COMMAND_TIMEOUT",
            "sysfs_root": "SYSFS_ROOT",
            "lsblk_binary": "LSBLK_BINARY",
            "nvme_binary": "NVME_BINARY",
            "smartctl_binary": "SMARTCTL_BINARY",
            "log_level": "LOG_LEVEL",
            "log_file": "LOG_FILE",
        }
        values = {}
        for field_name, env_name in env_map.items():
            raw = os.getenv(env_name, "").strip()
            if raw:
                values[field_name] = raw

        return cls(**values)
