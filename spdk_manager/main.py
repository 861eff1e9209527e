import argparse
import asyncio
import json
import sys
from dataclasses import dataclass
from typing import Any, List, Optional

from spdk_manager.config import Settings
from spdk_manager.errors import DeviceNotFound, TransportError
from spdk_manager.logging_config import setup_logging
from spdk_manager.services.disk_service import DiskService
from spdk_manager.services.nvme_discovery import summarize
from spdk_manager.services.rpc_catalog import SpdkOperations
from spdk_manager.services.rpc_client import SpdkRpcClient


@dataclass
class Services:
    """Components wired from one Settings instance."""

    settings: Settings
    client: SpdkRpcClient
    operations: SpdkOperations
    disks: DiskService


def build_services(settings: Settings) -> Services:
    client = SpdkRpcClient(settings)
    operations = SpdkOperations(client)
    return Services(
        settings=settings,
        client=client,
        operations=operations,
        disks=DiskService.from_settings(settings, operations),
    )


def engine_status(services: Services) -> dict:
    """SPDK reachability plus a short system summary."""
    status: dict = {
        "socket_path": services.settings.spdk_socket_path,
        "spdk_connected": False,
        "spdk_info": None,
    }
    try:
        services.operations.check_connection()
        status["spdk_connected"] = True
        status["spdk_info"] = services.operations.get_system_info()
    except TransportError as exc:
        status["spdk_error"] = str(exc)
    return status


def _dump(payload: Any) -> None:
    if isinstance(payload, list):
        payload = [item.model_dump(mode="json") for item in payload]
    elif hasattr(payload, "model_dump"):
        payload = payload.model_dump(mode="json")
    print(json.dumps(payload, indent=2))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="spdk-disks", description="SPDK disk inventory")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("inventory", help="unified disk inventory")
    sub.add_parser("available", help="disks that can be given to SPDK")
    sub.add_parser("stats", help="inventory statistics")
    device = sub.add_parser("device", help="one disk by name or path")
    device.add_argument("name")
    health = sub.add_parser("health", help="SMART pass/fail for one disk")
    health.add_argument("name")
    sub.add_parser("discover", help="raw NVMe discovery probe result")
    sub.add_parser("discover-summary", help="NVMe discovery summary")
    sub.add_parser("status", help="SPDK connection status")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = Settings.from_env()
    setup_logging("disks", settings.log_level, settings.log_file, stream=sys.stderr)
    services = build_services(settings)
    disks = services.disks

    try:
        if args.command == "inventory":
            _dump(asyncio.run(disks.get_unified_inventory()))
        elif args.command == "available":
            _dump(asyncio.run(disks.get_available_devices()))
        elif args.command == "stats":
            _dump(asyncio.run(disks.get_stats()))
        elif args.command == "device":
            _dump(asyncio.run(disks.get_device(args.name)))
        elif args.command == "health":
            _dump(asyncio.run(disks.check_health(args.name)))
        elif args.command == "discover":
            _dump(asyncio.run(disks.discover_nvme()))
        elif args.command == "discover-summary":
            _dump(summarize(asyncio.run(disks.discover_nvme())))
        elif args.command == "status":
            _dump(engine_status(services))
    except DeviceNotFound as exc:
        print(str(exc), file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
