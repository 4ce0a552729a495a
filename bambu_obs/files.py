"""Read-only access to print files stored on the printer.

The bridge only needs three lookups; how they are served (FTPS and 3MF
parsing) lives outside this package.
"""
from __future__ import annotations

from typing import Optional, Protocol


class PrintFileSource(Protocol):
    async def file_exists(self, path: str) -> bool: ...

    async def get_thumbnail(self, path: str) -> Optional[bytes]: ...

    async def get_print_weight(self, path: str) -> Optional[str]: ...


class NullFileSource:
    """Used when no file source is configured: every file is missing."""

    async def file_exists(self, path: str) -> bool:
        return False

    async def get_thumbnail(self, path: str) -> Optional[bytes]:
        return None

    async def get_print_weight(self, path: str) -> Optional[str]:
        return None


def ensure_suffix(name: str, suffix: str) -> str:
    if not name or name.lower().endswith(suffix.lower()):
        return name
    return name + suffix


def candidate_paths(subtask_name: str) -> list[str]:
    """Where a job's 3MF may live: sent from the slicer, then saved on the printer."""
    name = subtask_name.strip()
    return [
        ensure_suffix(f"/cache/{name}", ".3mf"),
        ensure_suffix(f"/{name}", ".3mf"),
    ]
