import pytest

from arch_installer.errors import ExternalCommandFailed
from arch_installer.lib.block import get_uuid, parent_disk, strip_subvolume


@pytest.mark.parametrize(
    "source,disk",
    [
        ("/dev/sda3", "/dev/sda"),
        ("/dev/vdb1", "/dev/vdb"),
        ("/dev/nvme0n1p2", "/dev/nvme0n1"),
        ("/dev/mmcblk0p1", "/dev/mmcblk0"),
        ("/dev/sda2[/@]", "/dev/sda"),
        ("/dev/nvme0n1p2[/@]", "/dev/nvme0n1"),
        ("/dev/mmcblk1p3[/@home]", "/dev/mmcblk1"),
    ],
)
def test_parent_disk(source, disk):
    assert parent_disk(source) == disk


def test_strip_subvolume():
    assert strip_subvolume("/dev/nvme0n1p2[/@]") == "/dev/nvme0n1p2"
    assert strip_subvolume("/dev/sda2") == "/dev/sda2"


def test_get_uuid(fake_run):
    fake_run.outputs["blkid"] = "0b5e-77aa\n"
    assert get_uuid("/dev/sda1") == "0b5e-77aa"
    assert fake_run.calls == [["blkid", "-s", "UUID", "-o", "value", "/dev/sda1"]]


def test_get_uuid_empty_output_fails(fake_run):
    with pytest.raises(ExternalCommandFailed):
        get_uuid("/dev/sda1")
