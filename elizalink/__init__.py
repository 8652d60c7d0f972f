"""
elizalink - ElizaOS 智能体桥接客户端

模块概述：
    本文件是 elizalink 包的入口文件（__init__.py），定义了包的元信息。
    elizalink 与 ElizaOS 服务器保持一条持久的 Socket.IO 会话，
    把"发消息、等回复"这种异步、多路复用的事件流包装成简单的请求/响应接口。

    整个包的核心功能包括：
    - 会话管理（连接、断线、重连、切换智能体）
    - 房间加入与消息发送
    - 入站回复与等待者的 FIFO 关联
    - 工具层（get_status / list_agents / chat_with_agent / set_agent）
    - 命令行与 MCP 服务入口（stdio）
"""

# 版本号，遵循语义化版本规范（主版本.次版本.修订号）
__version__ = "0.1.0"

# 项目 logo 表情符号，用于 CLI 输出
__logo__ = "🔗"
