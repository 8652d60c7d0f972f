"""
消息类型与观察者模块 - 会话与外部世界之间的数据结构和通知通道。

消息流向：
  调用方 → ElizaSession → OutboundEnvelope → 传输层 "message" 事件 → ElizaOS
  ElizaOS → messageBroadcast 事件 → InboundReply → 等待者 / ListenerRegistry 观察者
"""

from elizalink.bus.events import (
    ChatReply,
    ConnectionState,
    EnvelopeKind,
    InboundReply,
    OutboundEnvelope,
)
from elizalink.bus.listeners import ListenerRegistry

__all__ = [
    "ChatReply",
    "ConnectionState",
    "EnvelopeKind",
    "InboundReply",
    "OutboundEnvelope",
    "ListenerRegistry",
]
