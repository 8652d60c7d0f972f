"""
会话引擎模块 - 维护与 ElizaOS 服务器的持久连接，并把异步广播的回复关联到等待中的调用方。

ElizaSession 内部由四个协作部分组成：
- 会话生命周期：打开/关闭传输层、维护连接状态、在连接时校验身份不变式
- 房间成员关系：每个会话周期内只加入一次当前智能体绑定的房间
- 出站发送：构造并发出加入房间、发送消息两种信封
- 入站关联：把广播事件分发给观察者，并把有效回复按 FIFO 交给等待者

整体流程：
  connect() → 传输层 connect 事件 → 状态 CONNECTED → 加入房间
  send() / send_and_await() → 发出 SEND 信封
  messageBroadcast 事件 → notify_inbound() → 队列 → 等待者

状态机：
  DISCONNECTED --connect()--> CONNECTING --(connect 事件)--> CONNECTED
  CONNECTING --(超时 | 重连耗尽)--> ERROR
  CONNECTED --(disconnect 事件)--> DISCONNECTED
  ERROR 不是终态，可以再次调用 connect()

【关联的局限】
服务端不会回显出站消息的关联 ID，send_and_await 把"下一条有效回复"当作本次调用的回复。
多个 send_and_await 并发重叠时，回复可能被配对给另一个调用（按注册顺序 FIFO 配对）。

【并发模型】
所有状态只在同一个 asyncio 事件循环上修改，调用方 API 和传输层事件回调不会交错执行，
因此不需要锁。挂起只发生在 await 处：connect() 等待 connect/超时事件，
wait_for_next()/send_and_await() 等待回复或定时器。

【Java 开发者类比】
- 等待者（_Waiter）相当于 CompletableFuture + ScheduledFuture 组合
- ListenerRegistry 相当于观察者模式中的 Subject
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

from loguru import logger
from pydantic import ValidationError

from elizalink.bus.events import ChatReply, ConnectionState, InboundReply, OutboundEnvelope
from elizalink.bus.listeners import Listener, ListenerRegistry
from elizalink.config.schema import IDENTITY_FIELDS, SessionConfig, TransportConfig
from elizalink.errors import (
    ConfigurationError,
    ConnectTimeoutError,
    ElizaLinkError,
    ReconnectFailedError,
    ResponseError,
    ResponseTimeoutError,
    TransportError,
    WaiterDiscardedError,
)
from elizalink.session.directory import AgentDirectory
from elizalink.transport.base import (
    CONNECT,
    CONNECT_ERROR,
    DISCONNECT,
    MESSAGE_BROADCAST,
    OUTBOUND_EVENT,
    RECONNECT_ATTEMPT,
    RECONNECT_FAILED,
    Transport,
    TransportOptions,
)
from elizalink.transport.sio import SocketIOTransport
from elizalink.utils.helpers import new_message_id, truncate_string

TransportFactory = Callable[[TransportOptions], Transport]


@dataclass(eq=False)
class _Waiter:
    """一个等待回复的调用方：一次性 Future + 超时定时器。"""

    future: asyncio.Future
    timer: asyncio.TimerHandle | None = None


class ElizaSession:
    """
    ElizaOS 会话：持有一条传输层连接以及由它派生的全部状态。

    参数:
        config: 会话配置（由进程入口构造后传入，引擎从不读取环境变量）
        transport_config: 传输层参数（重连次数、重连间隔等）
        transport_factory: 根据 TransportOptions 创建传输层的工厂，默认 SocketIOTransport
        directory: 可选的智能体目录客户端；未提供时按需创建

    属性:
        connection_time: 最近一次成功连接耗时（毫秒），从未连接时为 None

    使用示例:
        session = ElizaSession(config.to_session_config())
        await session.connect()
        reply = await session.send_and_await("hello")
    """

    def __init__(
        self,
        config: SessionConfig,
        transport_config: TransportConfig | None = None,
        transport_factory: TransportFactory = SocketIOTransport,
        directory: AgentDirectory | None = None,
    ):
        self._config = config.model_copy()
        self.transport_config = transport_config or TransportConfig()
        self._transport_factory = transport_factory
        self._directory = directory
        self._owns_directory = directory is None

        self._transport: Transport | None = None
        self._state = ConnectionState.DISCONNECTED
        self._joined = False
        self._queue: deque[InboundReply] = deque()
        self._waiters: deque[_Waiter] = deque()
        self._listeners = ListenerRegistry()

        self._pending_connect: asyncio.Future | None = None
        self._connect_started = 0.0
        self.connection_time: int | None = None

        logger.info(
            f"Session initialized: agent={config.agent_id or '-'} room={config.room_id or '-'} "
            f"server={config.server_url or '-'} response_timeout={config.response_timeout}ms"
        )

    # ---- 状态与配置访问 ---------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    def get_state(self) -> ConnectionState:
        return self._state

    def get_config(self) -> SessionConfig:
        """返回当前配置的副本，修改副本不会影响会话。"""
        return self._config.model_copy()

    @property
    def joined(self) -> bool:
        """当前会话周期内是否已发出加入房间的信封。"""
        return self._joined

    @property
    def queued_replies(self) -> int:
        """尚未被任何等待者消费的有效回复数量。"""
        return len(self._queue)

    @property
    def pending_waiters(self) -> int:
        """正在等待回复的调用方数量。"""
        return len(self._waiters)

    # ---- 观察者注册 ---------------------------------------------------------

    def on_state_change(self, callback: Listener) -> Listener:
        """注册连接状态变化回调，参数为新的 ConnectionState。"""
        return self._listeners.subscribe("state", callback)

    def on_message(self, callback: Listener) -> Listener:
        """注册入站消息回调。每条广播都会通知，无论是否为有效回复。"""
        return self._listeners.subscribe("message", callback)

    def on_error(self, callback: Listener) -> Listener:
        """注册错误回调，参数为异常对象。"""
        return self._listeners.subscribe("error", callback)

    def _set_state(self, state: ConnectionState) -> None:
        if self._state == state:
            return
        self._state = state
        logger.info(f"Connection state changed to: {state.value}")
        self._listeners.emit("state", state)

    def _handle_error(self, error: Exception) -> None:
        logger.error(f"Session error: {error}")
        self._set_state(ConnectionState.ERROR)
        self._listeners.emit("error", error)

    # ---- 会话生命周期 ---------------------------------------------------------

    def _is_connected(self) -> bool:
        return (
            self._state == ConnectionState.CONNECTED
            and self._transport is not None
            and self._transport.connected
        )

    @staticmethod
    def _check_identity(agent_id: str, room_id: str) -> None:
        if not agent_id or not room_id:
            raise ConfigurationError("agent_id and room_id must be set before connecting")
        if agent_id != room_id:
            raise ConfigurationError("agent_id and room_id must be identical")

    def _transport_options(self) -> TransportOptions:
        cfg, t = self._config, self.transport_config
        return TransportOptions(
            url=cfg.server_url,
            query={"clientType": "client", "agentId": cfg.agent_id, "userId": cfg.user_id},
            reconnection_attempts=t.reconnection_attempts,
            reconnection_delay_s=t.reconnection_delay / 1000.0,
            connect_timeout_s=cfg.connection_timeout / 1000.0,
            transports=list(t.transports),
            socketio_path=t.socket_path,
        )

    async def connect(self) -> bool:
        """
        连接 ElizaOS 服务器并加入房间。

        已连接时直接返回 True，不会重复打开传输层或重复加入房间；
        已有连接尝试进行中时共享该尝试的结果。

        返回:
            连接成功返回 True

        异常:
            ConfigurationError: agent_id/room_id 缺失或不相等（不会打开传输层）
            ConnectTimeoutError: connection_timeout 内未连接成功
            ReconnectFailedError: 传输层重连次数耗尽
            TransportError: 连接尚未建立就被 disconnect() 中止，或连上后加入房间失败
        """
        if self._is_connected():
            logger.info("Already connected to ElizaOS server")
            return True

        try:
            self._check_identity(self._config.agent_id, self._config.room_id)
        except ConfigurationError as e:
            logger.error(str(e))
            raise

        if self._pending_connect is not None and not self._pending_connect.done():
            return await asyncio.shield(self._pending_connect)

        await self._discard_transport()

        loop = asyncio.get_running_loop()
        pending = loop.create_future()
        self._pending_connect = pending
        self._joined = False
        self._connect_started = loop.time()
        self._set_state(ConnectionState.CONNECTING)

        transport = self._transport_factory(self._transport_options())
        self._transport = transport
        self._bind(transport)

        timeout_ms = self._config.connection_timeout
        logger.info(f"Connecting to ElizaOS server at {self._config.server_url}")
        try:
            await transport.open()
            return await asyncio.wait_for(asyncio.shield(pending), timeout=timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            error = ConnectTimeoutError(timeout_ms)
            if not pending.done():
                pending.set_exception(error)
            self._handle_error(error)
            await self._discard_transport()
            raise error from None
        except ElizaLinkError:
            raise
        except Exception as e:
            error = TransportError(f"Failed to open transport: {e}")
            if not pending.done():
                pending.set_exception(error)
            self._handle_error(error)
            await self._discard_transport()
            raise error from e

    def _bind(self, transport: Transport) -> None:
        """注册传输层事件处理器。来自已被替换的旧传输层的事件会被忽略。"""

        def current(handler: Callable[..., Any]) -> Callable[..., Any]:
            def wrapper(*args: Any) -> Any:
                if transport is not self._transport:
                    logger.debug(f"Ignoring event from stale transport: {handler.__name__}")
                    return None
                return handler(*args)

            wrapper.__name__ = handler.__name__
            return wrapper

        transport.on(CONNECT, current(self._on_connect))
        transport.on(CONNECT_ERROR, current(self._on_connect_error))
        transport.on(RECONNECT_ATTEMPT, current(self._on_reconnect_attempt))
        transport.on(RECONNECT_FAILED, current(self._on_reconnect_failed))
        transport.on(DISCONNECT, current(self._on_disconnect))
        transport.on(MESSAGE_BROADCAST, current(self.notify_inbound))

    async def _discard_transport(self) -> None:
        """摘下当前传输层并关闭它。摘下后它发出的事件不再影响会话状态。"""
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.close()

    async def _on_connect(self) -> None:
        pending = self._pending_connect
        if pending is not None and not pending.done():
            self.connection_time = int((asyncio.get_running_loop().time() - self._connect_started) * 1000)
            logger.info(f"Successfully connected to ElizaOS server in {self.connection_time}ms")
        else:
            logger.info("Reconnected to ElizaOS server")
        self._set_state(ConnectionState.CONNECTED)
        try:
            await self._join_room()
        except Exception as e:
            # 处理器异常不会传出传输层，失败经由 pending 交给 connect()
            error = TransportError(f"Failed to join room: {e}")
            self._handle_error(error)
            if pending is not None and not pending.done():
                pending.set_exception(error)
            return
        if pending is not None and not pending.done():
            pending.set_result(True)

    def _on_connect_error(self, error: Any = None) -> None:
        logger.warning(f"Connection error: {error}")

    def _on_reconnect_attempt(self, attempt: int) -> None:
        logger.warning(f"Reconnection attempt {attempt}/{self.transport_config.reconnection_attempts}")

    def _on_reconnect_failed(self) -> None:
        error = ReconnectFailedError()
        self._handle_error(error)
        pending = self._pending_connect
        if pending is not None and not pending.done():
            pending.set_exception(error)

    def _on_disconnect(self, reason: str = "") -> None:
        logger.warning(f"Disconnected from ElizaOS server: {reason or 'unknown'}")
        self._joined = False
        self._set_state(ConnectionState.DISCONNECTED)
        self._reset_inbound(WaiterDiscardedError("Connection closed before a reply arrived"))

    async def disconnect(self) -> None:
        """
        关闭传输层。已关闭时无副作用。

        状态不会在这里同步变为 DISCONNECTED，而是由传输层的 disconnect 事件驱动。
        若有连接尝试正在进行，该尝试以 TransportError 失败；
        此时传输层从未连上、不会发出 disconnect 事件，状态直接回到 DISCONNECTED。
        """
        logger.info("Disconnecting from ElizaOS server by client call")
        pending = self._pending_connect
        aborted = pending is not None and not pending.done()
        if aborted:
            pending.set_exception(TransportError("Disconnected before the connection was established"))
        if self._transport is not None:
            await self._transport.close()
        if aborted:
            self._set_state(ConnectionState.DISCONNECTED)

    async def close(self) -> None:
        """断开连接并释放自己创建的目录客户端。"""
        await self.disconnect()
        if self._directory is not None and self._owns_directory:
            await self._directory.close()

    async def set_config(self, **changes: Any) -> None:
        """
        合并部分配置。

        身份字段（server_url、user_id、world_id、agent_id、room_id）任一变化属于关键变更：
        先断开并确保状态为 DISCONNECTED，然后五个身份字段都非空时重新连接，
        否则保持 DISCONNECTED。重连失败只记录日志，结果反映在 state 上。

        参数:
            **changes: SessionConfig 的字段名与新值

        异常:
            ConfigurationError: 未知字段、值不合法，或合并后 agent_id 与 room_id 不相等
                                （此时配置保持不变）
        """
        unknown = sorted(set(changes) - set(SessionConfig.model_fields))
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")
        try:
            merged = SessionConfig.model_validate({**self._config.model_dump(), **changes})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
        if merged.agent_id and merged.room_id and merged.agent_id != merged.room_id:
            raise ConfigurationError("agent_id and room_id must be identical")

        old, self._config = self._config, merged
        critical = any(getattr(old, name) != getattr(merged, name) for name in IDENTITY_FIELDS)
        logger.info(f"Session configuration updated: {sorted(changes)} (critical={critical})")
        if not critical:
            return

        if self._state != ConnectionState.DISCONNECTED:
            logger.info("Critical configuration changed, disconnecting before reconnecting")
            await self.disconnect()
            await self._discard_transport()
            self._set_state(ConnectionState.DISCONNECTED)
        self._joined = False

        if all(getattr(merged, name) for name in IDENTITY_FIELDS):
            try:
                await self.connect()
            except ElizaLinkError as e:
                logger.error(f"Failed to connect with new configuration: {e}")
        else:
            logger.warning(
                "Configuration is missing required fields (agent_id, room_id, server_url, "
                "user_id, world_id); session will remain disconnected"
            )
            self._set_state(ConnectionState.DISCONNECTED)

    async def switch_target(self, agent_id: str, room_id: str) -> None:
        """
        切换到另一个智能体及其房间。

        断开当前连接（等待一小段时间让关闭完成），替换 agent_id/room_id，
        清空成员关系、入站队列和等待者（等待者以 WaiterDiscardedError 失败），然后重新连接。

        异常:
            ConfigurationError: agent_id 与 room_id 不相等
            ConnectError / TransportError: 重连失败时原样抛出
        """
        logger.info(f"Switching agent to {agent_id} (room {room_id})")
        if agent_id != room_id:
            logger.error("Switching agent failed: agent_id and room_id must be identical")
            raise ConfigurationError("agent_id and room_id must be identical")

        if self._state != ConnectionState.DISCONNECTED:
            # 也覆盖连接尝试进行中的情况：旧尝试携带的是旧 agentId，不能被复用
            logger.info("Disconnecting current agent before switching")
            await self.disconnect()
            await self._discard_transport()
            self._set_state(ConnectionState.DISCONNECTED)
            await asyncio.sleep(self.transport_config.switch_grace / 1000.0)

        self._config = self._config.model_copy(update={"agent_id": agent_id, "room_id": room_id})
        self._joined = False
        self._reset_inbound(WaiterDiscardedError(f"Agent switched to {agent_id}"))

        try:
            await self.connect()
        except ElizaLinkError as e:
            logger.error(f"Failed to connect after switching to agent {agent_id}: {e}")
            raise
        logger.info(f"Switched and connected to agent {agent_id}")

    # ---- 房间成员关系与出站发送 ---------------------------------------------------------

    async def _join_room(self) -> None:
        """发出加入房间的信封。未连接、已加入或身份未配置时什么也不做。"""
        if self._transport is None or not self._transport.connected:
            logger.error("Cannot join room: not connected")
            return
        if self._joined:
            logger.info("Already joined room")
            return
        cfg = self._config
        if not cfg.room_id or not cfg.agent_id:
            logger.error("Cannot join room: room_id or agent_id is not configured")
            return

        logger.info(f"Joining room {cfg.room_id} with agent {cfg.agent_id}")
        self._joined = True
        try:
            await self._emit(OutboundEnvelope.join(cfg.room_id, cfg.agent_id))
        except Exception:
            self._joined = False
            raise

    async def _emit(self, envelope: OutboundEnvelope) -> None:
        transport = self._transport
        if transport is None:
            raise TransportError("Socket is not initialized")
        await transport.emit(OUTBOUND_EVENT, envelope.to_wire())

    async def send(self, text: str) -> str:
        """
        向当前智能体发送一条消息，不等待回复。

        未连接时先调用 connect()（失败原样抛出），未加入房间时先加入。

        返回:
            本条消息的关联 ID（仅用于诊断）

        异常:
            TransportError: 连接未建立，无法加入房间或发送
        """
        if not self._is_connected():
            logger.warning("Not connected, attempting to connect before sending message")
            await self.connect()

        if not self._joined:
            logger.warning("Not joined to room, joining now")
            if self._state != ConnectionState.CONNECTED:
                raise TransportError("Cannot send message, connection not established")
            await self._join_room()

        cfg = self._config
        message_id = new_message_id()
        logger.info(f'Sending message to agent {cfg.agent_id}: "{truncate_string(text, 50)}" (ID: {message_id})')
        await self._emit(OutboundEnvelope.send(
            sender_id=cfg.user_id,
            text=text,
            room_id=cfg.room_id,
            agent_id=cfg.agent_id,
            world_id=cfg.world_id,
            message_id=message_id,
        ))
        return message_id

    # ---- 入站关联 ---------------------------------------------------------

    def notify_inbound(self, data: Any) -> None:
        """
        处理一条入站广播。

        有效回复（正文非空白且发送者为当前智能体）进入队列，
        再按 FIFO 与等待者两两配对；其他消息只通知观察者。
        """
        reply = data if isinstance(data, InboundReply) else InboundReply.from_payload(data)
        logger.debug(
            f"Inbound message from {reply.sender_id or '-'} "
            f"(queued={len(self._queue)}, waiters={len(self._waiters)})"
        )
        if reply.is_valid_from(self._config.agent_id):
            logger.info(f"Valid reply from agent {reply.sender_id}: {truncate_string(reply.text, 80)}")
            self._queue.append(reply)
            self._drain()
        else:
            logger.warning(
                f"Discarding message: not a valid textual reply from agent {self._config.agent_id} "
                f"(sender={reply.sender_id or '-'}, has_text={reply.has_text})"
            )
        self._listeners.emit("message", reply)

    def _drain(self) -> None:
        while self._queue and self._waiters:
            waiter = self._waiters.popleft()
            if waiter.future.done():
                continue
            if waiter.timer is not None:
                waiter.timer.cancel()
            waiter.future.set_result(self._queue.popleft())

    def _expect_reply(self, timeout_ms: int | None = None) -> asyncio.Future:
        """
        取得下一条有效回复的 Future。

        队列非空时返回已完成的 Future（不注册等待者、不启动定时器）；
        否则注册一个等待者，超时后以 ResponseTimeoutError 失败。
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        if self._queue:
            future.set_result(self._queue.popleft())
            return future

        timeout = timeout_ms if timeout_ms is not None else self._config.response_timeout
        agent_id = self._config.agent_id
        waiter = _Waiter(future)

        def expire() -> None:
            if waiter in self._waiters:
                self._waiters.remove(waiter)
            if not future.done():
                logger.warning(f"Timeout waiting for a reply from agent {agent_id} after {timeout}ms")
                future.set_exception(ResponseTimeoutError(agent_id, timeout))

        waiter.timer = loop.call_later(timeout / 1000.0, expire)
        future.add_done_callback(lambda _: self._release_waiter(waiter))
        self._waiters.append(waiter)
        return future

    def _release_waiter(self, waiter: _Waiter) -> None:
        # 已完成（回复、超时、取消）的等待者：清理定时器并移出集合
        if waiter.timer is not None:
            waiter.timer.cancel()
        if waiter in self._waiters:
            self._waiters.remove(waiter)

    def _reset_inbound(self, error: ResponseError) -> None:
        """清空入站队列；仍在等待的调用方以 error 失败。"""
        self._queue.clear()
        waiters = list(self._waiters)
        self._waiters.clear()
        for waiter in waiters:
            if waiter.timer is not None:
                waiter.timer.cancel()
            if not waiter.future.done():
                waiter.future.set_exception(error)

    async def wait_for_next(self, timeout_ms: int | None = None) -> InboundReply:
        """
        等待下一条有效回复。

        参数:
            timeout_ms: 超时毫秒数，默认使用 response_timeout

        返回:
            InboundReply

        异常:
            ResponseTimeoutError: 超时未收到有效回复
            WaiterDiscardedError: 等待期间切换了智能体或连接断开
        """
        return await self._expect_reply(timeout_ms)

    async def send_and_await(self, text: str) -> ChatReply:
        """
        发送消息并等待回复。

        先注册等待者再发送，把之后到达的下一条有效回复当作本次回复。
        超时不会抛出异常，而是返回 error 已设置、text 为 None 的 ChatReply；
        只有连接失败等硬性错误才会抛出。
        """
        if not self._is_connected():
            logger.warning("Not connected, attempting to connect before sending message")
            await self.connect()

        future = self._expect_reply()
        try:
            message_id = await self.send(text)
        except BaseException:
            if future.done() and not future.cancelled() and future.exception() is None:
                # 已从队列取出的回复放回队首
                self._queue.appendleft(future.result())
            future.cancel()
            raise

        try:
            reply = await future
        except ResponseError as e:
            logger.warning(f"No reply for message {message_id}: {e}")
            return ChatReply.failure(str(e), message_id)
        logger.info(f"Received reply for message {message_id} from {reply.sender_name or reply.sender_id}")
        return ChatReply.from_reply(reply, message_id)

    # ---- 智能体目录 ---------------------------------------------------------

    async def list_available_agents(self) -> list[dict[str, str]]:
        """
        列出服务器上可用的智能体。

        返回:
            [{"id": ..., "name": ...}, ...]

        异常:
            DirectoryError / httpx.HTTPError: 原样抛出
        """
        if self._directory is None:
            self._directory = AgentDirectory(self._config.server_url)
        elif self._owns_directory:
            self._directory.server_url = self._config.server_url
        return await self._directory.list_agents()
