import os
import sys

import pytest

from colima.core import LIMA_VERSION, LimaVersionError, check_lima_version, lima_version_supported


def test_minimum_version_accepted():
    assert check_lima_version(LIMA_VERSION) == LIMA_VERSION


def test_prerelease_suffix_is_stripped():
    assert check_lima_version("v0.20.1-alpha") == "v0.20.1"


def test_version_without_prefix():
    assert check_lima_version("1.0.0") == "1.0.0"


def test_head_is_accepted():
    assert check_lima_version("HEAD-abc123") == "HEAD"


def test_older_version_rejected():
    with pytest.raises(LimaVersionError, match="minimum Lima version supported is v0.18.0"):
        check_lima_version("v0.17.2")


def test_invalid_version_rejected():
    with pytest.raises(LimaVersionError, match="invalid semver version for Lima"):
        check_lima_version("banana")


def test_empty_version_rejected():
    with pytest.raises(LimaVersionError):
        check_lima_version("")


def _fake_limactl(directory, body):
    script = directory / "limactl"
    script.write_text(f"#!{sys.executable}\n{body}\n")
    script.chmod(0o755)


def test_lima_version_supported_reads_limactl(tmp_path, monkeypatch):
    _fake_limactl(tmp_path, "print('{\"version\": \"0.19.1\"}')")
    monkeypatch.setenv("PATH", str(tmp_path) + os.pathsep + os.environ.get("PATH", ""))
    assert lima_version_supported() == "0.19.1"


def test_lima_version_supported_rejects_old(tmp_path, monkeypatch):
    _fake_limactl(tmp_path, "print('{\"version\": \"0.10.0\"}')")
    monkeypatch.setenv("PATH", str(tmp_path) + os.pathsep + os.environ.get("PATH", ""))
    with pytest.raises(LimaVersionError, match="minimum Lima version"):
        lima_version_supported()


def test_lima_version_supported_bad_json(tmp_path, monkeypatch):
    _fake_limactl(tmp_path, "print('not json')")
    monkeypatch.setenv("PATH", str(tmp_path) + os.pathsep + os.environ.get("PATH", ""))
    with pytest.raises(LimaVersionError, match="error decoding"):
        lima_version_supported()


def test_lima_version_supported_missing_limactl(tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", str(tmp_path))
    with pytest.raises(LimaVersionError, match="error checking Lima version"):
        lima_version_supported()