import io
import os
import subprocess
import sys

import pytest

from colima import config
from colima.process import (
    Dependency,
    LocalHost,
    Process,
    ProcessDependencies,
    dependencies,
    process_dir,
)


class FakeDep(Dependency):
    def __init__(self, installed=False, fail=False):
        self._installed = installed
        self.fail = fail
        self.installs = 0

    def installed(self):
        return self._installed

    def install(self, host):
        self.installs += 1
        if self.fail:
            raise RuntimeError("cannot install")
        self._installed = True


class FakeProcess(Process):
    def __init__(self, name, deps, root):
        self._name = name
        self._deps = deps
        self._root = root

    def name(self):
        return self._name

    def start(self, stop_event):
        stop_event.wait()

    def alive(self, daemon_running):
        if not daemon_running:
            raise RuntimeError("not running")

    def dependencies(self):
        return self._deps, self._root


@pytest.fixture
def profile(tmp_path, monkeypatch):
    monkeypatch.setenv("COLIMA_HOME", str(tmp_path))
    config.set_profile("processtest")
    yield config.current_profile()
    config.set_profile("default")


def test_process_dir_is_under_profile_config(profile):
    path = process_dir()
    assert os.path.basename(path) == "daemon"
    assert os.path.dirname(path) == profile.config_dir()


def test_installed_only_when_all_installed():
    deps = ProcessDependencies(
        [FakeProcess("a", [FakeDep(True)], False), FakeProcess("b", [FakeDep(True)], True)]
    )
    assert deps.installed() is True
    deps = ProcessDependencies(
        [FakeProcess("a", [FakeDep(True)], False), FakeProcess("b", [FakeDep(False)], True)]
    )
    assert deps.installed() is False


def test_install_skips_installed():
    done = FakeDep(True)
    missing = FakeDep(False)
    deps = ProcessDependencies([FakeProcess("a", [done, missing], True)])
    deps.install(LocalHost())
    assert done.installs == 0
    assert missing.installs == 1
    assert deps.installed() is True


def test_install_error_names_process():
    deps = ProcessDependencies([FakeProcess("vmnet", [FakeDep(False, fail=True)], True)])
    with pytest.raises(RuntimeError, match="dependencies for 'vmnet': cannot install"):
        deps.install(LocalHost())


def test_dependencies_rootful_flag():
    _, root = dependencies(FakeProcess("a", [FakeDep(False)], True))
    assert root is True
    _, root = dependencies(FakeProcess("a", [FakeDep(True)], True))
    assert root is False
    _, root = dependencies(FakeProcess("a", [FakeDep(False)], False))
    assert root is False


def test_dependencies_wraps_all_processes():
    procs = [FakeProcess("a", [], False), FakeProcess("b", [], False)]
    deps, _ = dependencies(*procs)
    assert deps.processes == procs


def test_local_host_run_quiet():
    LocalHost().run_quiet(sys.executable, "-c", "pass")
    with pytest.raises(subprocess.CalledProcessError):
        LocalHost().run_quiet(sys.executable, "-c", "raise SystemExit(3)")


def test_local_host_run_with_passes_input():
    out = io.StringIO()
    LocalHost().run_with(
        "hello", out, sys.executable, "-c", "import sys; sys.stdout.write(sys.stdin.read())"
    )
    assert out.getvalue() == "hello"


def test_local_host_run_with_failure_keeps_output():
    out = io.StringIO()
    with pytest.raises(subprocess.CalledProcessError):
        LocalHost().run_with(
            None, out, sys.executable, "-c", "import sys; sys.stderr.write('bad'); sys.exit(1)"
        )
    assert out.getvalue() == "bad"


def test_local_host_with_dir(tmp_path):
    out = io.StringIO()
    host = LocalHost().with_dir(str(tmp_path))
    host.run_with(None, out, sys.executable, "-c", "import os; print(os.getcwd(), end='')")
    assert os.path.realpath(out.getvalue()) == os.path.realpath(str(tmp_path))


def test_local_host_rejects_empty_command():
    with pytest.raises(ValueError):
        LocalHost().run_quiet()