"""
传输层基类模块 - 定义会话所依赖的传输能力的统一接口。

会话引擎不关心帧格式、心跳和编码，只把传输层看作一种能力：
- 可以打开（open）和关闭（close）
- 会发出具名事件（connect、disconnect、messageBroadcast ...）
- 可以发送具名消息（emit）

【核心抽象方法】
- open(): 开始连接（非阻塞，连接成功通过 connect 事件通知）
- close(): 关闭连接，已关闭时无副作用
- emit(): 发送一条具名消息
- connected: 当前是否已连接

【Java 开发者类比】
- Transport 相当于 Java 的 abstract class + interface
- on()/_fire() 相当于一个极简的事件总线
"""

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger

# 传输层事件名称
CONNECT = "connect"
CONNECT_ERROR = "connect_error"
RECONNECT_ATTEMPT = "reconnect_attempt"
RECONNECT_FAILED = "reconnect_failed"
DISCONNECT = "disconnect"
MESSAGE_BROADCAST = "messageBroadcast"  # 智能体回复广播
MESSAGE_COMPLETE = "messageComplete"  # 回复完成信号（仅记录，不参与关联）

# 所有出站信封都通过这个事件名发送
OUTBOUND_EVENT = "message"


@dataclass
class TransportOptions:
    """
    打开传输层所需的参数。

    属性:
        url: 服务器地址
        query: 连接时附带的查询参数
        reconnection_attempts: 最大重连次数
        reconnection_delay_s: 固定重连间隔（秒）
        connect_timeout_s: 单次连接尝试的超时（秒）
        transports: 允许的底层传输方式
        socketio_path: Socket.IO 路径
    """

    url: str
    query: dict[str, str] = field(default_factory=dict)
    reconnection_attempts: int = 5
    reconnection_delay_s: float = 3.0
    connect_timeout_s: float = 120.0
    transports: list[str] = field(default_factory=lambda: ["polling", "websocket"])
    socketio_path: str = "/socket.io"


class Transport(ABC):
    """
    传输层抽象基类。

    子类负责真正的连接管理，并在合适的时机调用 _fire() 发出事件。
    事件处理函数按注册顺序调用，可以是同步函数或协程函数。
    """

    def __init__(self, options: TransportOptions):
        self.options = options
        self._handlers: dict[str, list[Callable[..., Any]]] = {}

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        """注册事件处理函数。"""
        self._handlers.setdefault(event, []).append(handler)

    async def _fire(self, event: str, *args: Any) -> None:
        """
        依次调用某事件的所有处理函数。

        单个处理函数的异常只记录日志，不影响其他处理函数，
        也不会传播回底层传输库的事件循环。
        """
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in transport '{event}' handler: {e}")

    @property
    @abstractmethod
    def connected(self) -> bool:
        """当前是否已连接。"""

    @abstractmethod
    async def open(self) -> None:
        """
        开始连接。

        该方法不等待连接完成：连接成功时发出 connect 事件，
        每次失败发出 connect_error，重试前发出 reconnect_attempt，
        重试耗尽发出 reconnect_failed。
        """

    @abstractmethod
    async def close(self) -> None:
        """关闭连接。已关闭时无副作用；若连接处于打开状态，关闭后会发出 disconnect 事件。"""

    @abstractmethod
    async def emit(self, event: str, data: dict[str, Any]) -> None:
        """发送一条具名消息。"""
