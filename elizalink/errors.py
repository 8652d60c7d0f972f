"""
异常类型定义 - elizalink 的错误分类体系。

错误分为五类：
- ConfigurationError：智能体/房间 ID 缺失或不一致，同步抛出，从不重试
- ConnectError：连接超时或重连次数耗尽，会话状态同时变为 ERROR
- ResponseError：等待回复超时或等待者被丢弃
- TransportError：会话未初始化、传输层不可用等运行时错误
- DirectoryError：智能体目录接口返回了无法识别的数据

所有异常都继承自 ElizaLinkError，调用方可以用一个 except 捕获全部业务错误。
"""


class ElizaLinkError(Exception):
    """elizalink 所有业务异常的基类。"""


class ConfigurationError(ElizaLinkError):
    """会话配置不合法（缺少 agent_id/room_id，或两者不相等）。"""


class ConnectError(ElizaLinkError):
    """连接阶段的失败。"""


class ConnectTimeoutError(ConnectError):
    """在 connection_timeout 内没有收到 connect 事件。"""

    def __init__(self, timeout_ms: int):
        super().__init__(f"Connection timeout after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class ReconnectFailedError(ConnectError):
    """传输层的重连次数已耗尽。"""

    def __init__(self, message: str = "Failed to reconnect to ElizaOS server after multiple attempts"):
        super().__init__(message)


class ResponseError(ElizaLinkError):
    """等待智能体回复失败。send_and_await 会把它转换成错误形态的结果而不是抛出。"""


class ResponseTimeoutError(ResponseError):
    """等待者在超时前没有收到有效回复。"""

    def __init__(self, agent_id: str, timeout_ms: int):
        super().__init__(
            f"Timeout waiting for a valid textual response from agent {agent_id} after {timeout_ms}ms"
        )
        self.agent_id = agent_id
        self.timeout_ms = timeout_ms


class WaiterDiscardedError(ResponseError):
    """等待者在切换智能体时被清空。"""


class TransportError(ElizaLinkError):
    """传输层不可用（未初始化、未连接、发送失败等）。"""


class DirectoryError(ElizaLinkError):
    """智能体目录接口返回的数据格式不正确。"""
