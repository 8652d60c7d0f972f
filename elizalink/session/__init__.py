"""会话模块 - ElizaOS 会话引擎与智能体目录。"""

from elizalink.session.client import ElizaSession
from elizalink.session.directory import AgentDirectory

__all__ = ["ElizaSession", "AgentDirectory"]
