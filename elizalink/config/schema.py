"""
配置数据模型定义 (config/schema.py)
=================================
本模块使用 Pydantic 定义 elizalink 的完整配置结构。
所有配置项都有默认值，用户只需在 config.json 或环境变量中覆盖需要修改的部分。

整体配置结构（树形）：
Config (根配置，支持 ELIZAOS_ 前缀的环境变量)
├── server_url / user_id / world_id   - ElizaOS 服务器与身份
├── agent_id / room_id                - 当前对话的智能体与房间（两者必须相等）
├── connection_timeout / response_timeout - 超时（毫秒）
├── transport     - Socket.IO 传输参数（重连次数、重连间隔等）
└── logging       - 日志配置（级别、分类过滤、屏蔽关键字、日志文件）

SessionConfig 是传给会话引擎的显式配置对象：
引擎内部只认 SessionConfig，从不读取进程环境变量。

对于 Java 开发者：
- Pydantic 的 BaseModel 类似于 Java 的 POJO/Record，但自带字段验证和默认值
- BaseSettings 类似于 Spring 的 @ConfigurationProperties，额外支持从环境变量读取配置
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings

# 会话身份字段：任何一个发生变化都属于"关键变更"，需要断开重连
IDENTITY_FIELDS = ("agent_id", "room_id", "server_url", "user_id", "world_id")


class SessionConfig(BaseModel):
    """
    会话配置。由会话引擎持有，只会被整体替换，不会被内部逻辑部分修改。

    不变式：agent_id 与 room_id 同时非空时必须相等
    （ElizaOS 中房间的身份就是当前智能体的身份），由会话引擎在连接/切换时校验。
    """
    server_url: str = ""  # ElizaOS 服务器地址，如 http://localhost:3000
    user_id: str = ""  # 当前用户 UUID
    world_id: str = ""  # ElizaOS 世界 UUID
    agent_id: str = ""  # 对话智能体 UUID
    room_id: str = ""  # 房间 UUID（必须与 agent_id 相同）
    connection_timeout: int = Field(default=120000, gt=0)  # 建立连接的超时（毫秒）
    response_timeout: int = Field(default=90000, gt=0)  # 等待回复的超时（毫秒）

    model_config = ConfigDict(extra="forbid")


class TransportConfig(BaseModel):
    """Socket.IO 传输配置。对应原始客户端里写死的连接参数。"""
    reconnection_attempts: int = Field(default=5, ge=0)  # 最大重连次数
    reconnection_delay: int = Field(default=3000, ge=0)  # 固定重连间隔（毫秒）
    transports: list[str] = Field(default_factory=lambda: ["polling", "websocket"])
    socket_path: str = "/socket.io"  # Socket.IO 路径
    switch_grace: int = Field(default=250, ge=0)  # 切换智能体时断开后的等待时间（毫秒）


class LoggingConfig(BaseModel):
    """
    日志配置。在进程入口处构造一次，传给 setup_logging()。

    categories 以模块名前缀为键设置独立的最低级别，
    例如 {"elizalink.transport": "WARNING"} 只让传输层输出警告及以上日志。
    suppress 中的字符串出现在日志消息里时，该条日志被丢弃。
    """
    level: str = "INFO"  # 默认最低日志级别
    categories: dict[str, str] = Field(default_factory=dict)  # 模块前缀 → 最低级别
    suppress: list[str] = Field(default_factory=lambda: ["could not infer client capabilities"])
    log_file: str | None = None  # 可选日志文件路径（如 /tmp/elizalink-debug.log）
    rotation: str = "10 MB"  # 日志文件轮转大小


class Config(BaseSettings):
    """
    elizalink 根配置类。

    继承自 Pydantic 的 BaseSettings，除了支持从 JSON 文件加载外，
    还支持从环境变量读取配置：
    - 环境变量前缀: ELIZAOS_（与原有部署脚本中的变量名一致）
    - 嵌套分隔符: __ (双下划线)
    - 示例: ELIZAOS_AGENT_ID=... 覆盖 agent_id，
      ELIZAOS_TRANSPORT__RECONNECTION_ATTEMPTS=10 覆盖 transport.reconnection_attempts
    - 优先级：环境变量 > 配置文件 > 默认值
    """
    server_url: str = "http://localhost:3000"
    user_id: str = ""
    world_id: str = ""
    agent_id: str = ""
    room_id: str = ""
    connection_timeout: int = Field(default=120000, gt=0)
    response_timeout: int = Field(default=90000, gt=0)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def to_session_config(self) -> SessionConfig:
        """构造传给会话引擎的 SessionConfig（只包含会话需要的字段）。"""
        return SessionConfig(
            server_url=self.server_url,
            user_id=self.user_id,
            world_id=self.world_id,
            agent_id=self.agent_id,
            room_id=self.room_id,
            connection_timeout=self.connection_timeout,
            response_timeout=self.response_timeout,
        )

    def missing_identity(self) -> list[str]:
        """返回启动时必须提供但为空的字段（user_id、world_id）。"""
        return [name for name in ("user_id", "world_id") if not getattr(self, name)]

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        # 环境变量优先于配置文件（配置文件内容以 init 参数的形式传入）
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    # Pydantic Settings 配置：支持 ELIZAOS_ 前缀的环境变量，嵌套用 __ 分隔
    model_config = ConfigDict(
        env_prefix="ELIZAOS_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )
