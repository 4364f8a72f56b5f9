"""Probe primitives: read-only command execution and filesystem access.

Adapters and the transcript tailer depend only on the ``CommandRunner`` and
``FileAccess`` protocols so tests can substitute deterministic fakes.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Protocol, Sequence

from mission_control import config
from mission_control.models import CommandResult

logger = logging.getLogger("mission_control.adapters")

_MAX_OUTPUT_BYTES = 2 * 1024 * 1024
EXIT_TIMEOUT = 124
EXIT_NOT_FOUND = 127


class CommandRunner(Protocol):
    async def __call__(self, command: str, args: Sequence[str]) -> CommandResult: ...


def _decode(raw: bytes | None) -> str:
    if not raw:
        return ""
    return raw[:_MAX_OUTPUT_BYTES].decode("utf-8", errors="replace").strip()


async def shell_command_runner(
    command: str,
    args: Sequence[str],
    timeout: float | None = None,
) -> CommandResult:
    """Run ``command`` without a shell and capture its output.

    Never raises for probe failures: a missing binary, permission error or
    timeout comes back as a non-zero ``exitCode`` with the reason in stderr.
    """
    limit = float(timeout if timeout is not None else config.PROBE_TIMEOUT_SECONDS)
    try:
        proc = await asyncio.create_subprocess_exec(
            command,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        return CommandResult(stdout="", stderr=str(exc) or f"{command}: not found", exitCode=EXIT_NOT_FOUND)
    except PermissionError as exc:
        return CommandResult(stdout="", stderr=str(exc), exitCode=126)
    except OSError as exc:
        return CommandResult(stdout="", stderr=str(exc), exitCode=1)

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=limit)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        logger.warning("Probe timed out after %ss: %s", limit, command)
        return CommandResult(stdout="", stderr=f"timed out after {limit:g}s", exitCode=EXIT_TIMEOUT)

    exit_code = proc.returncode if proc.returncode is not None else 1
    return CommandResult(stdout=_decode(stdout), stderr=_decode(stderr), exitCode=exit_code)


class FileAccess(Protocol):
    def read_text(self, path: Path) -> str: ...

    def mtime(self, path: Path) -> float: ...

    def size(self, path: Path) -> int: ...

    def list_dir(self, path: Path) -> list[Path]: ...

    def read_bytes_from(self, path: Path, offset: int) -> bytes: ...

    def read_head(self, path: Path, limit: int) -> bytes: ...


class LocalFileAccess:
    """Plain local-disk reads. Never writes."""

    def read_text(self, path: Path) -> str:
        return path.read_text(encoding="utf-8", errors="replace")

    def mtime(self, path: Path) -> float:
        return path.stat().st_mtime

    def size(self, path: Path) -> int:
        return path.stat().st_size

    def list_dir(self, path: Path) -> list[Path]:
        return sorted(path.iterdir())

    def read_bytes_from(self, path: Path, offset: int) -> bytes:
        with path.open("rb") as handle:
            handle.seek(max(0, offset))
            return handle.read()

    def read_head(self, path: Path, limit: int) -> bytes:
        with path.open("rb") as handle:
            return handle.read(limit)
