"""
MCP 服务器模块 - 把桥接工具注册到 FastMCP，通过 stdio 暴露给 MCP 客户端。

协议细节（initialize 握手、JSON-RPC 2.0 分帧、tools/list、tools/call）全部由
官方 mcp SDK 处理，这里只负责注册工具。stdout 只用于协议输出，日志写 stderr。

依赖：
- mcp：Model Context Protocol 官方 Python SDK
"""

from loguru import logger
from mcp.server.fastmcp import FastMCP

from elizalink import __version__
from elizalink.session.client import ElizaSession
from elizalink.tools.bridge import TOOL_DESCRIPTIONS, BridgeTools

SERVER_NAME = "Society ElizaOS Connector"


def build_server(session: ElizaSession) -> FastMCP:
    """
    创建 FastMCP 服务器并注册四个桥接工具。

    参数:
        session: 工具共享的会话

    返回:
        FastMCP: 尚未运行的服务器
    """
    server = FastMCP(
        SERVER_NAME,
        instructions=f"elizalink {__version__}: chat with ElizaOS agents over a persistent socket session.",
    )
    tools = BridgeTools(session)
    for name, description in TOOL_DESCRIPTIONS.items():
        server.add_tool(getattr(tools, name), name=name, description=description)
    logger.debug(f"Registered MCP tools: {', '.join(TOOL_DESCRIPTIONS)}")
    return server


async def serve_stdio(server: FastMCP) -> None:
    """在 stdin/stdout 上运行服务器，直到 stdin 关闭。"""
    logger.info(f"MCP server '{server.name}' ready on stdio")
    await server.run_stdio_async()
    logger.info("stdin closed, MCP server stopped")
