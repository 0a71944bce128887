from __future__ import annotations

import subprocess

import pytest

from safeoutputs.observability import configure_logging
from safeoutputs.shell import CommandError, _preview, run


def test_run_success(monkeypatch: pytest.MonkeyPatch) -> None:
    called: dict[str, object] = {}

    def fake_run(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        called["args"] = args
        called["kwargs"] = kwargs
        return subprocess.CompletedProcess(args=["gh"], returncode=0, stdout="ok", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)

    out = run(["gh", "api", "/user"], input_text="{}")

    assert out == "ok"
    assert called["args"] == (["gh", "api", "/user"],)
    kwargs = called["kwargs"]
    assert isinstance(kwargs, dict)
    assert kwargs["input"] == "{}"
    assert kwargs["capture_output"] is True
    assert kwargs["check"] is False


def test_run_failure_raises_with_stderr_first(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def fake_run(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        _ = args, kwargs
        return subprocess.CompletedProcess(
            args=["gh"], returncode=1, stdout="out", stderr="HTTP 404: Not Found\n"
        )

    monkeypatch.setattr(subprocess, "run", fake_run)
    configure_logging(verbose=True)

    with pytest.raises(CommandError) as exc_info:
        run(["gh", "api", "/missing"])

    assert str(exc_info.value).startswith("HTTP 404: Not Found\ncmd: gh api /missing\nexit: 1")
    assert exc_info.value.stderr == "HTTP 404: Not Found\n"
    stderr = capsys.readouterr().err
    assert 'event=command_failed command="gh api /missing" exit_code=1' in stderr
    assert "stdout=out" in stderr


def test_run_failure_falls_back_to_stdout_then_placeholder(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    outputs = [("only stdout", ""), ("", "")]

    def fake_run(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        _ = args, kwargs
        stdout, stderr = outputs.pop(0)
        return subprocess.CompletedProcess(args=["x"], returncode=3, stdout=stdout, stderr=stderr)

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(CommandError, match="^only stdout"):
        run(["x"])
    with pytest.raises(CommandError, match="^<no output>"):
        run(["x"])


def test_run_unchecked_returns_stdout_on_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        subprocess,
        "run",
        lambda *args, **kwargs: subprocess.CompletedProcess(
            args=["x"], returncode=1, stdout="HTTP/2.0 404", stderr="nope"
        ),
    )

    assert run(["x"], check=False) == "HTTP/2.0 404"


def test_preview_handles_empty_and_truncation() -> None:
    assert _preview("") == "<empty>"
    assert _preview("a\nb") == "a\\nb"
    assert _preview("x" * 10, limit=4) == "xxxx..."
