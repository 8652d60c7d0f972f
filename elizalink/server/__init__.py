"""服务器模块 - 通过 MCP（stdio）把桥接工具暴露给客户端。"""

from elizalink.server.mcp_server import build_server, serve_stdio

__all__ = ["build_server", "serve_stdio"]
