import os
import shutil
import socket
import subprocess
import tempfile

import pytest

from colima import config
from colima.process import HostActions, process_dir
from colima.vmnet import (
    NAME,
    OPT_DIR,
    RunDir,
    SudoersFile,
    VmnetBinaries,
    VmnetInfo,
    VmnetProcess,
    run_dir,
    vmnet_info,
)


class RecordingHost(HostActions):
    def __init__(self, fail=False):
        self.calls = []
        self.inputs = []
        self.fail = fail

    def run_quiet(self, *args):
        self.calls.append(args)

    def run_interactive(self, *args):
        self.calls.append(args)
        if self.fail:
            raise subprocess.CalledProcessError(1, list(args))

    def run_with(self, stdin, stdout, *args):
        self.calls.append(args)
        self.inputs.append(stdin.read() if hasattr(stdin, "read") else stdin)
        if self.fail:
            stdout.write("denied")
            raise subprocess.CalledProcessError(1, list(args))

    def with_dir(self, path):
        return self


@pytest.fixture
def assets(tmp_path):
    network = tmp_path / "assets" / "network"
    network.mkdir(parents=True)
    (network / "sudo.txt").write_text("sudoers rules\n")
    (network / "vmnet_x86_64.tar.gz").write_bytes(b"archive-x86")
    (network / "vmnet_arm64.tar.gz").write_bytes(b"archive-arm")
    return str(tmp_path / "assets")


@pytest.fixture
def profile(tmp_path, monkeypatch):
    monkeypatch.setenv("COLIMA_HOME", str(tmp_path))
    config.set_profile("vmnettest")
    yield config.current_profile()
    config.set_profile("default")


def test_run_dir_is_under_opt():
    assert run_dir() == "/opt/colima/run"
    assert os.path.dirname(run_dir()) == OPT_DIR


def test_vmnet_info_paths(profile):
    info = vmnet_info()
    assert info.pid_file == os.path.join(run_dir(), "vmnet-" + profile.short_name + ".pid")
    assert os.path.dirname(info.socket_file) == process_dir()
    assert os.path.basename(info.socket_file) == "vmnet.sock"


def test_process_name_and_dependencies(assets):
    proc = VmnetProcess(assets_dir=assets)
    assert proc.name() == NAME
    deps, root = proc.dependencies()
    assert root is True
    assert [type(d) for d in deps] == [SudoersFile, VmnetBinaries, RunDir]
    assert deps[0].assets_dir == assets


def test_sudoers_installed(assets, tmp_path):
    target = tmp_path / "colima-sudoers"
    dep = SudoersFile(assets_dir=assets, path=str(target))
    assert dep.installed() is False
    target.write_text("# header\nsudoers rules\n# footer\n")
    assert dep.installed() is True
    target.write_text("something else\n")
    assert dep.installed() is False


def test_sudoers_install_writes_file(assets):
    host = RecordingHost()
    SudoersFile(assets_dir=assets).install(host)
    assert host.calls[0] == ("sudo", "mkdir", "-p", "/etc/sudoers.d")
    assert host.calls[1] == ("sudo", "sh", "-c", "cat > /etc/sudoers.d/colima")
    assert host.inputs == ["sudoers rules\n"]


def test_sudoers_install_failure_reports_output(assets):
    host = RecordingHost()
    host.run_interactive = lambda *args: None
    host.fail = True
    with pytest.raises(RuntimeError, match="stderr: denied"):
        SudoersFile(assets_dir=assets).install(host)


def test_sudoers_install_missing_asset(tmp_path):
    with pytest.raises(RuntimeError, match="embedded sudo file"):
        SudoersFile(assets_dir=str(tmp_path)).install(RecordingHost())


def test_binaries_installed(tmp_path):
    first = tmp_path / "one"
    second = tmp_path / "two"
    dep = VmnetBinaries(bins=(str(first), str(second)))
    assert dep.installed() is False
    first.write_text("")
    assert dep.installed() is False
    second.write_text("")
    assert dep.installed() is True


def test_binaries_install_extracts_archive(assets, tmp_path):
    host = RecordingHost()
    opt = str(tmp_path / "opt")
    seen = {}

    def interactive(*args):
        host.calls.append(args)
        if args[:3] == ("sudo", "sh", "-c"):
            archive = args[3].split("tar xfz ")[1].split(" ")[0]
            with open(archive, "rb") as fh:
                seen["data"] = fh.read()
            seen["path"] = archive

    host.run_interactive = interactive
    VmnetBinaries(assets_dir=assets, opt_dir=opt, arch="arm64").install(host)
    assert host.calls[0] == ("sudo", "mkdir", "-p", opt)
    assert host.calls[1][3].startswith(f"cd {opt} && tar xfz ")
    assert seen["data"] == b"archive-arm"
    assert not os.path.exists(seen["path"])


def test_binaries_install_missing_archive(tmp_path):
    with pytest.raises(RuntimeError, match="embedded vmnet file"):
        VmnetBinaries(assets_dir=str(tmp_path), arch="x86_64").install(RecordingHost())


def test_binaries_install_failure(assets, tmp_path):
    host = RecordingHost(fail=True)
    with pytest.raises(RuntimeError, match="privileged dir"):
        VmnetBinaries(assets_dir=assets, opt_dir=str(tmp_path), arch="x86_64").install(host)


def test_run_dir_dependency(tmp_path):
    target = tmp_path / "run"
    dep = RunDir(path=str(target))
    assert dep.installed() is False
    host = RecordingHost()
    dep.install(host)
    assert host.calls == [("sudo", "mkdir", "-p", str(target))]
    target.mkdir()
    assert dep.installed() is True


def test_alive_without_socket_raises(tmp_path):
    info = VmnetInfo(pid_file=str(tmp_path / "none.pid"), socket_file=str(tmp_path / "x.sock"))
    with pytest.raises(RuntimeError, match="socket file not found"):
        VmnetProcess(info=info).alive(True)


def test_alive_with_dead_socket_raises(tmp_path):
    path = tmp_path / "x.sock"
    path.write_text("")
    info = VmnetInfo(pid_file=str(tmp_path / "none.pid"), socket_file=str(path))
    with pytest.raises(RuntimeError, match="vmnet socket file error"):
        VmnetProcess(info=info).alive(True)


def test_alive_with_listening_socket():
    directory = tempfile.mkdtemp(prefix="vmn")
    path = os.path.join(directory, "v.sock")
    server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        server.bind(path)
        server.listen(1)
        info = VmnetInfo(pid_file=os.path.join(directory, "none.pid"), socket_file=path)
        assert VmnetProcess(info=info).alive(False) is None
    finally:
        server.close()
        shutil.rmtree(directory, ignore_errors=True)