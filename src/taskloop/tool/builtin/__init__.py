"""Built-in tools available to every agent definition."""

from taskloop.tool.builtin.block import BlockTaskTool
from taskloop.tool.builtin.read_file import ReadFileTool
from taskloop.tool.builtin.think import ThinkTool

BUILTIN_TOOLS = {
    ThinkTool.name: ThinkTool,
    BlockTaskTool.name: BlockTaskTool,
    ReadFileTool.name: ReadFileTool,
}

__all__ = ["BUILTIN_TOOLS", "BlockTaskTool", "ReadFileTool", "ThinkTool"]
