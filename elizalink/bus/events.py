"""
消息事件类型定义模块 - 定义会话与传输层之间流转的数据结构。

本模块定义了：
- ConnectionState：会话连接状态
- EnvelopeKind / OutboundEnvelope：出站信封（加入房间、发送消息）
- InboundReply：入站回复（智能体通过 messageBroadcast 广播的消息）
- ChatReply：send_and_await 的结果，超时时携带 error 而不是抛出异常

【设计要点】
- 出站信封在线上的格式是 {"type": <int>, "payload": {...}}，payload 使用 camelCase 键名
- 入站回复只解析引擎真正依赖的字段（发送者、正文等），
  其余字段原样保存在 extra 里转交给观察者，保证向前兼容
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

# 发送消息时固定使用的发送者名称与来源标记
SENDER_NAME = "mcp-user"
MESSAGE_SOURCE = "mcp_client_chat"


class ConnectionState(str, Enum):
    """会话连接状态。同一时刻只有一个会话持有该值。"""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class EnvelopeKind(IntEnum):
    """出站信封类型（ElizaOS socket 协议中的数值）。"""

    ROOM_JOINING = 1  # 加入房间
    SEND_MESSAGE = 2  # 向房间内的智能体发送消息


@dataclass
class OutboundEnvelope:
    """
    出站信封 - 通过传输层 "message" 事件发出的一条结构化消息。

    属性:
        kind: 信封类型
        payload: 线上 payload（camelCase 键名）
    """

    kind: EnvelopeKind
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def join(cls, room_id: str, agent_id: str) -> "OutboundEnvelope":
        """构造加入房间的信封：房间 ID + 只含当前智能体的列表。"""
        return cls(EnvelopeKind.ROOM_JOINING, {"roomId": room_id, "agentIds": [agent_id]})

    @classmethod
    def send(
        cls,
        *,
        sender_id: str,
        text: str,
        room_id: str,
        agent_id: str,
        world_id: str,
        message_id: str,
    ) -> "OutboundEnvelope":
        """构造发送消息的信封。message_id 仅用于诊断，服务端不会回显。"""
        return cls(EnvelopeKind.SEND_MESSAGE, {
            "senderId": sender_id,
            "senderName": SENDER_NAME,
            "message": text,
            "roomId": room_id,
            "agentId": agent_id,
            "worldId": world_id,
            "messageId": message_id,
            "source": MESSAGE_SOURCE,
        })

    def to_wire(self) -> dict[str, Any]:
        """转换为线上格式。"""
        return {"type": int(self.kind), "payload": dict(self.payload)}


# 入站回复中被显式解析的字段（线上名 → 属性名）
_REPLY_FIELDS = {
    "id": "id",
    "senderId": "sender_id",
    "senderName": "sender_name",
    "text": "text",
    "roomId": "room_id",
}


@dataclass
class InboundReply:
    """
    入站回复 - 服务端 messageBroadcast 事件携带的消息。

    引擎只依赖 sender_id 和 text 两个字段判断是否为有效回复；
    其他未知字段原样保存在 extra 中，不做校验。

    属性:
        id: 消息 ID
        sender_id: 发送者 ID（有效回复必须等于当前 agent_id）
        sender_name: 发送者名称
        text: 正文
        room_id: 所属房间
        extra: 未显式建模的其余字段
    """

    id: str = ""
    sender_id: str = ""
    sender_name: str = ""
    text: str = ""
    room_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: Any) -> "InboundReply":
        """从原始事件数据构造。非字典数据整体放入 extra["raw"]；非字符串的已知字段按空值处理并保留在 extra 中。"""
        if not isinstance(data, dict):
            return cls(extra={"raw": data})
        known: dict[str, str] = {}
        extra: dict[str, Any] = {}
        for key, value in data.items():
            attr = _REPLY_FIELDS.get(key)
            if attr and isinstance(value, str):
                known[attr] = value
            else:
                extra[key] = value
        return cls(**known, extra=extra)

    @property
    def has_text(self) -> bool:
        return bool(self.text.strip())

    def is_valid_from(self, agent_id: str) -> bool:
        """是否为来自指定智能体的有效文本回复（正文非空白，且发送者等于 agent_id）。"""
        return self.has_text and bool(agent_id) and self.sender_id == agent_id

    def to_dict(self) -> dict[str, Any]:
        """还原为线上格式（已知字段 + extra）。"""
        data = dict(self.extra)
        for wire_key, attr in _REPLY_FIELDS.items():
            value = getattr(self, attr)
            if value:
                data[wire_key] = value
        return data


@dataclass
class ChatReply:
    """
    send_and_await 的结果。

    超时或等待者被丢弃时 error 被设置、text 为 None，
    这样调用方协议只会因硬性连接失败而抛出异常，不会因超时抛出。
    """

    text: str | None = None
    sender_id: str = ""
    sender_name: str = ""
    room_id: str = ""
    message_id: str = ""  # 请求的关联 ID
    error: str | None = None
    reply: InboundReply | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def from_reply(cls, reply: InboundReply, message_id: str) -> "ChatReply":
        return cls(
            text=reply.text,
            sender_id=reply.sender_id,
            sender_name=reply.sender_name,
            room_id=reply.room_id,
            message_id=message_id,
            reply=reply,
        )

    @classmethod
    def failure(cls, error: str, message_id: str = "") -> "ChatReply":
        return cls(error=error, message_id=message_id)
