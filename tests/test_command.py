import io
import subprocess
import sys

import pytest

from colima.command import Command, command, command_interactive, prompt, quoted_args


def test_quoted_args_basic():
    assert quoted_args(["a", "b c"]) == '["a" "b c"]'


def test_quoted_args_empty():
    assert quoted_args([]) == "[]"


def test_quoted_args_escapes():
    assert quoted_args(['x"y', "t\tz"]) == '["x\\"y" "t\\tz"]'


def test_command_args():
    cmd = command("ls", "-l")
    assert cmd.args == ["ls", "-l"]
    assert cmd.interactive is False
    assert command_interactive("ls").interactive is True


def test_output_captures_stdout():
    out = command(sys.executable, "-c", "print('hello')").output()
    assert out.strip() == "hello"


def test_stdin_is_empty_by_default():
    out = command(sys.executable, "-c", "import sys; print(len(sys.stdin.read()))").output()
    assert out.strip() == "0"


def test_stdin_data_is_passed():
    cmd = Command(
        [sys.executable, "-c", "import sys; print(sys.stdin.read().upper())"],
        stdin="data",
    )
    assert cmd.output().strip() == "DATA"


def test_run_failure_raises():
    with pytest.raises(subprocess.CalledProcessError) as info:
        command(sys.executable, "-c", "import sys; sys.exit(3)").run()
    assert info.value.returncode == 3


def test_cwd_is_used(tmp_path):
    cmd = Command([sys.executable, "-c", "import os; print(os.getcwd())"], cwd=str(tmp_path))
    assert cmd.output().strip() == str(tmp_path.resolve()) or cmd.output().strip() == str(tmp_path)


@pytest.mark.parametrize(
    "answer,expected",
    [("y\n", True), ("Yes\n", True), ("n\n", False), ("\n", False), ("", False)],
)
def test_prompt(monkeypatch, capsys, answer, expected):
    monkeypatch.setattr("sys.stdin", io.StringIO(answer))
    assert prompt("continue") is expected
    assert capsys.readouterr().out.startswith("continue? [y/N] ")