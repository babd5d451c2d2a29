"""Read-file tool — give an agent read access to a working directory."""

from __future__ import annotations

import os
from typing import ClassVar

import aiofiles
from pydantic import BaseModel, Field

from taskloop.tool.base import BaseTool, ToolError, ToolOk, ToolResult


class ReadFileParams(BaseModel):
    path: str = Field(description="File path, relative to the working directory.")
    offset: int = Field(default=0, ge=0, description="First line to return (0-indexed).")
    limit: int = Field(default=400, ge=1, description="Maximum number of lines to return.")


class ReadFileTool(BaseTool[ReadFileParams]):
    """Read a text file, numbered by line, confined to ``root``."""

    name: ClassVar[str] = "read_file"
    description: ClassVar[str] = (
        "Read a text file from the working directory. Returns numbered lines; "
        "use offset and limit to page through large files."
    )
    param_model: ClassVar[type[BaseModel]] = ReadFileParams

    def __init__(self, root: str | None = None) -> None:
        self._root = os.path.realpath(root or os.getcwd())

    def _resolve(self, path: str) -> str | None:
        full = os.path.realpath(os.path.join(self._root, os.path.expanduser(path)))
        if full != self._root and not full.startswith(self._root + os.sep):
            return None
        return full

    async def execute(self, params: ReadFileParams) -> ToolResult:
        path = self._resolve(params.path)
        if path is None:
            return ToolError(output=f"Path is outside the working directory: {params.path}")
        if not os.path.isfile(path):
            return ToolError(output=f"File not found: {params.path}")

        try:
            async with aiofiles.open(path, "r", errors="replace") as f:
                lines = (await f.read()).splitlines()
        except OSError as e:
            return ToolError(output=f"Error reading {params.path}: {e}")

        total = len(lines)
        start = min(params.offset, total)
        end = min(start + params.limit, total)
        body = "\n".join(f"{i}: {line}" for i, line in enumerate(lines[start:end], start + 1))
        if end < total:
            body += f"\n\n[{total - end} more lines. Use offset={end} to continue.]"
        return ToolOk(output=body, brief=f"Read {params.path} ({end - start}/{total} lines)")
