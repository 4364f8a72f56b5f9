"""Workspace memory adapter: core documents plus the memory/ notes folder."""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

import yaml

from mission_control import config
from mission_control.adapters.base import SourceAdapter
from mission_control.command_runner import FileAccess, LocalFileAccess
from mission_control.date_utils import now_iso, to_iso
from mission_control.models import CollectedSnapshot, MemoryDocRecord

logger = logging.getLogger("mission_control.adapters")

CORE_DOCS = ("SOUL.md", "USER.md", "MEMORY.md")
MEMORY_DIR = "memory"

_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s+(.+?)\s*#*\s*$", re.MULTILINE)


def _extract_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    match = re.match(r"^---\s*\n(.*?)\n---\s*\n?(.*)", text, re.DOTALL)
    if not match:
        return {}, text
    try:
        fm = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError:
        fm = {}
    if not isinstance(fm, dict):
        fm = {}
    return fm, match.group(2)


def derive_title(path: Path, text: str) -> str:
    fm, body = _extract_frontmatter(text)
    title = fm.get("title")
    if isinstance(title, str) and title.strip():
        return title.strip()
    heading = _HEADING_RE.search(body)
    if heading:
        return heading.group(1)
    return path.stem


class MemoryAdapter(SourceAdapter):
    source_type = "memory"
    transport = "filesystem"

    def __init__(self, workspace_root: Path | str | None = None, files: FileAccess | None = None):
        self.workspace_root = Path(workspace_root) if workspace_root else config.WORKSPACE_ROOT
        self.files = files or LocalFileAccess()

    @property
    def source_ref(self) -> str:
        return str(self.workspace_root)

    def _read_doc(self, path: Path, kind: str) -> MemoryDocRecord:
        content = self.files.read_text(path)
        return MemoryDocRecord(
            path=str(path),
            kind=kind,
            updatedAt=to_iso(self.files.mtime(path)),
            title=derive_title(path, content),
            content=content,
        )

    async def collect(self) -> CollectedSnapshot[list[MemoryDocRecord]]:
        captured_at = now_iso()
        warnings: list[str] = []
        docs: list[MemoryDocRecord] = []

        for name in CORE_DOCS:
            try:
                docs.append(self._read_doc(self.workspace_root / name, "core"))
            except OSError:
                warnings.append(f"missing_core_doc:{name}")

        memory_root = self.workspace_root / MEMORY_DIR
        try:
            entries = self.files.list_dir(memory_root)
        except OSError as exc:
            logger.debug("Memory directory unavailable at %s: %s", memory_root, exc)
            entries = None
            warnings.append("memory_dir_unavailable")

        for entry in entries or []:
            if entry.suffix.lower() != ".md":
                continue
            try:
                docs.append(self._read_doc(entry, "memory"))
            except IsADirectoryError:
                continue
            except OSError as exc:
                logger.warning("Failed to read memory note %s: %s", entry, exc)
                warnings.append(f"memory_doc_unreadable:{entry.name}")

        return CollectedSnapshot[list[MemoryDocRecord]](
            metadata=self._metadata(captured_at),
            data=docs,
            warnings=warnings,
        )
