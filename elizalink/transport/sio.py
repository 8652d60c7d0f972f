"""
Socket.IO 传输层实现 - 基于 python-socketio 的 AsyncClient 连接 ElizaOS 服务器。

连接参数：
- 查询参数：clientType=client、agentId、userId（拼接在 URL 上）
- 底层传输：默认先 polling 再升级 websocket
- 重连：固定间隔、有限次数

【为什么不用 python-socketio 自带的重连】
会话引擎需要区分"单次连接失败"（connect_error）、"开始第 N 次重试"（reconnect_attempt）
和"重试耗尽"（reconnect_failed）三种信号，自带的重连只会默默重试，
所以这里关闭了 reconnection，由 _connect_loop 自己完成有限次数的重试并逐一发出事件。

依赖：
- python-socketio[asyncio_client]：Socket.IO 异步客户端
"""

import asyncio
from typing import Any
from urllib.parse import urlencode

import socketio
from loguru import logger

from elizalink.errors import TransportError
from elizalink.transport.base import (
    CONNECT,
    CONNECT_ERROR,
    DISCONNECT,
    MESSAGE_BROADCAST,
    MESSAGE_COMPLETE,
    RECONNECT_ATTEMPT,
    RECONNECT_FAILED,
    Transport,
    TransportOptions,
)
from elizalink.utils.helpers import truncate_string


class SocketIOTransport(Transport):
    """
    Socket.IO 传输层。

    属性:
        _client: python-socketio 的 AsyncClient 实例（open 时创建）
        _connect_task: 正在运行的连接/重连循环任务
        _closing: 是否由本端主动关闭（主动关闭后不再重连）
    """

    def __init__(self, options: TransportOptions):
        super().__init__(options)
        self._client: socketio.AsyncClient | None = None
        self._connect_task: asyncio.Task | None = None
        self._closing = False
        # AsyncClient 在 connect 处理器返回后才置 connected，处理器内需要自己的标志
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def connect_url(self) -> str:
        """带查询参数的完整连接地址。"""
        url = self.options.url.strip().rstrip("/")
        if not self.options.query:
            return url
        return f"{url}?{urlencode(self.options.query)}"

    async def open(self) -> None:
        if self._connect_task and not self._connect_task.done():
            return
        self._closing = False
        if self._client is None:
            self._client = self._build_client()
        self._connect_task = asyncio.create_task(self._connect_loop())

    def _build_client(self) -> socketio.AsyncClient:
        """创建 AsyncClient 并注册事件处理器。"""
        client = socketio.AsyncClient(reconnection=False, logger=False, engineio_logger=False)

        @client.event
        async def connect() -> None:
            logger.info(f"Socket connected to {self.options.url}")
            self._connected = True
            await self._fire(CONNECT)

        @client.event
        async def disconnect(*args: Any) -> None:
            reason = str(args[0]) if args else "unknown"
            logger.info(f"Socket disconnected: {reason}")
            self._connected = False
            await self._fire(DISCONNECT, reason)
            if not self._closing:
                # 非本端主动断开：按同样的重试策略重新连接
                await self.open()

        @client.on(MESSAGE_BROADCAST)
        async def on_broadcast(data: Any) -> None:
            await self._fire(MESSAGE_BROADCAST, data)

        @client.on(MESSAGE_COMPLETE)
        async def on_complete(data: Any = None) -> None:
            logger.debug(f"Message complete: {truncate_string(str(data), 200)}")
            await self._fire(MESSAGE_COMPLETE, data)

        return client

    async def _connect_loop(self) -> None:
        """
        连接循环：首次尝试 + 最多 reconnection_attempts 次重试。

        每次失败发出 connect_error，每次重试前等待固定间隔并发出 reconnect_attempt(n)，
        全部失败后发出 reconnect_failed。
        """
        attempts = self.options.reconnection_attempts
        for attempt in range(attempts + 1):
            if attempt > 0:
                await asyncio.sleep(self.options.reconnection_delay_s)
                if self._closing:
                    return
                logger.info(f"Reconnect attempt {attempt}/{attempts}")
                await self._fire(RECONNECT_ATTEMPT, attempt)
            try:
                await self._client.connect(
                    self.connect_url,
                    transports=self.options.transports,
                    socketio_path=self.options.socketio_path.strip().lstrip("/"),
                    wait_timeout=max(1.0, self.options.connect_timeout_s),
                )
                return
            except Exception as e:
                logger.warning(f"Socket connect error: {e}")
                await self._fire(CONNECT_ERROR, e)
        logger.error(f"Failed to connect after {attempts} reconnect attempts")
        await self._fire(RECONNECT_FAILED)

    async def close(self) -> None:
        self._closing = True
        task, self._connect_task = self._connect_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._client is not None and (self._client.connected or self._connected):
            await self._client.disconnect()
        self._connected = False

    async def emit(self, event: str, data: dict[str, Any]) -> None:
        if not self.connected:
            raise TransportError("Socket not connected")
        await self._client.emit(event, data)
