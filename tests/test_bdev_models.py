from spdk_manager.models.bdev import DriverKind, DriverPayload, EngineBdev


def test_policy_keys_are_not_driver_kinds():
    payload = DriverPayload.from_driver_specific(
        {"mp_policy": "active_passive", "nvme": [{"pci_address": "0000:00:04.0"}]}
    )

    assert payload.kind is DriverKind.NVME
    assert payload.pci_addresses() == ["0000:00:04.0"]


def test_product_name_fallback():
    assert DriverPayload.from_driver_specific({}, "Malloc disk").kind is DriverKind.MALLOC
    assert DriverPayload.from_driver_specific({"mp_policy": "x"}, "Raid Volume").kind is DriverKind.RAID
    assert DriverPayload.from_driver_specific(None, None).kind is DriverKind.UNKNOWN


def test_nvme_pci_addresses_from_trid():
    payload = DriverPayload.from_driver_specific(
        {
            "nvme": [
                {"trid": {"trtype": "PCIe", "traddr": "0000:3B:00.0"}},
                {"trid": {"trtype": "TCP", "traddr": "10.0.0.2"}},
            ]
        }
    )

    assert payload.pci_addresses() == ["0000:3b:00.0"]
    assert payload.has_controller_identity() is True


def test_engine_bdev_from_rpc():
    bdev = EngineBdev.from_rpc(
        {
            "name": "aio0",
            "aliases": ["0b7e4d9c"],
            "product_name": "AIO disk",
            "block_size": 4096,
            "num_blocks": 256,
            "claimed": True,
            "driver_specific": {"aio": {"filename": "/dev/sdb"}},
        }
    )

    assert bdev.size_bytes == 1048576
    assert bdev.claimed is True
    assert bdev.driver.kind is DriverKind.AIO
    assert bdev.driver.aio_filename() == "/dev/sdb"
    assert bdev.driver.pci_addresses() == []
