from __future__ import annotations

import logging
import subprocess

from safeoutputs.observability import log_event


class CommandError(RuntimeError):
    def __init__(self, message: str, *, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr


LOGGER = logging.getLogger("safeoutputs.shell")


def _preview(text: str, *, limit: int = 200) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def run(
    argv: list[str],
    *,
    input_text: str | None = None,
    check: bool = True,
) -> str:
    proc = subprocess.run(
        argv,
        input=input_text,
        text=True,
        capture_output=True,
        check=False,
    )
    if check and proc.returncode != 0:
        log_event(
            LOGGER,
            "command_failed",
            level=logging.ERROR,
            command=" ".join(argv),
            exit_code=proc.returncode,
            stderr=_preview(proc.stderr),
            stdout=_preview(proc.stdout),
        )
        # Callers surface this text in per-request results, so keep stderr first.
        detail = proc.stderr.strip() or proc.stdout.strip() or "<no output>"
        raise CommandError(
            f"{detail}\ncmd: {' '.join(argv)}\nexit: {proc.returncode}",
            stderr=proc.stderr,
        )
    return proc.stdout
