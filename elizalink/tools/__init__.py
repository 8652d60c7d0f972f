"""工具模块 - 对外暴露的命名操作。"""

from elizalink.tools.bridge import TOOL_DESCRIPTIONS, BridgeTools, error_result

__all__ = ["BridgeTools", "TOOL_DESCRIPTIONS", "error_result"]
