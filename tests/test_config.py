import pytest

from arch_installer.config import InstallerConfig, load_installer_config


def test_defaults():
    cfg = InstallerConfig()
    assert cfg.state_dir is None
    assert cfg.target_root == "/mnt"
    assert cfg.test_host == "archlinux.org"
    assert cfg.retry_delay_seconds == 3.0
    assert cfg.operations["pacman-sync"].attempts == 3


def test_load_yaml(tmp_path):
    path = tmp_path / "installer.yaml"
    path.write_text(
        "paths:\n"
        "  state_dir: /srv/state\n"
        "network:\n"
        "  test_host: example.org\n"
        "  timeout: 2\n"
        "retry:\n"
        "  delay_seconds: 0\n"
        "operations:\n"
        "  mirror-optimize:\n"
        "    attempts: 4\n"
    )
    cfg = load_installer_config(str(path))
    assert cfg.state_dir == "/srv/state"
    assert cfg.test_host == "example.org"
    assert cfg.network_timeout == 2
    assert cfg.retry_delay_seconds == 0.0
    assert cfg.operations["mirror-optimize"].attempts == 4
    assert cfg.operations["mirror-optimize"].critical is False


def test_explicit_missing_file_is_error(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_installer_config(str(tmp_path / "missing.yaml"))


def test_non_mapping_rejected(tmp_path):
    path = tmp_path / "installer.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        load_installer_config(str(path))


def test_bad_operations_rejected(tmp_path):
    path = tmp_path / "installer.yaml"
    path.write_text("operations:\n  pacstrap: 3\n")
    with pytest.raises(ValueError):
        load_installer_config(str(path))


@pytest.mark.parametrize(
    "text",
    [
        "network:\n  timeout: soon\n",
        "retry:\n  delay_seconds: [1, 2]\n",
        "retry:\n  delay_seconds: -1\n",
        "operations:\n  pacstrap:\n    attempts: many\n",
        "network: archlinux.org\n",
    ],
)
def test_bad_values_rejected_at_load(tmp_path, text):
    path = tmp_path / "installer.yaml"
    path.write_text(text)
    with pytest.raises(ValueError):
        load_installer_config(str(path))
