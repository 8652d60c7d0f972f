"""传输层模块 - 会话引擎与 ElizaOS 服务器之间的连接能力。"""

from elizalink.transport.base import Transport, TransportOptions
from elizalink.transport.sio import SocketIOTransport

__all__ = ["Transport", "TransportOptions", "SocketIOTransport"]
