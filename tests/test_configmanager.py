import ipaddress
from unittest.mock import patch

import pytest
import yaml

from colima.config import Config, Kubernetes, Mount, Network
from colima.configmanager import ConfigError, load_from, save_to_file, validate_config


def test_round_trip(tmp_path):
    conf = Config(
        cpu=4,
        memory=8,
        disk=100,
        runtime="containerd",
        hostname="box",
        mounts=[Mount(location="/data", mount_point="/mnt/data", writable=True)],
        network=Network(dns_resolvers=[ipaddress.ip_address("1.1.1.1")], dns_hosts={"a": "b"}),
        kubernetes=Kubernetes(enabled=True, version="v1", k3s_args=["--x"]),
        activate_runtime=False,
        env={"K": "V"},
    )
    path = str(tmp_path / "c.yaml")
    save_to_file(conf, path)
    assert load_from(path) == conf


def test_hostname_always_written(tmp_path):
    path = str(tmp_path / "c.yaml")
    save_to_file(Config(), path)
    with open(path) as fh:
        assert yaml.safe_load(fh) == {"hostname": ""}


def test_empty_file_gives_empty_config(tmp_path):
    path = tmp_path / "c.yaml"
    path.write_text("")
    conf = load_from(str(path))
    assert conf == Config()
    assert conf.is_empty()


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="could not load config from file"):
        load_from(str(tmp_path / "missing.yaml"))


def test_invalid_yaml(tmp_path):
    path = tmp_path / "c.yaml"
    path.write_text("cpu: [\n")
    with pytest.raises(ConfigError, match="could not load config from file"):
        load_from(str(path))


def test_wrong_type(tmp_path):
    path = tmp_path / "c.yaml"
    path.write_text("cpu: many\n")
    with pytest.raises(ConfigError):
        load_from(str(path))


def test_validate_accepts_qemu_sshfs():
    conf = Config(mount_type="sshfs", vm_type="qemu")
    assert validate_config(conf) is conf


def test_validate_rejects_mount_type():
    with pytest.raises(ConfigError, match="invalid mountType: 'nfs'"):
        validate_config(Config(mount_type="nfs", vm_type="qemu"))


def test_validate_rejects_empty_vm_type():
    with pytest.raises(ConfigError, match="invalid vmType: ''"):
        validate_config(Config(mount_type="9p"))


@patch("platform.system", return_value="Linux")
def test_validate_vz_needs_macos(_system):
    with pytest.raises(ConfigError, match="invalid mountType: 'virtiofs'"):
        validate_config(Config(mount_type="virtiofs", vm_type="vz"))
    with pytest.raises(ConfigError, match="invalid vmType: 'vz'"):
        validate_config(Config(mount_type="sshfs", vm_type="vz"))


@patch("platform.mac_ver", return_value=("14.0", ("", "", ""), ""))
@patch("platform.system", return_value="Darwin")
def test_validate_vz_on_new_macos(_system, _ver):
    conf = Config(mount_type="virtiofs", vm_type="vz")
    assert validate_config(conf) is conf