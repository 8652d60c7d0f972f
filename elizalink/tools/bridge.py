"""
ElizaOS 桥接工具模块 (tools/bridge.py)

BridgeTools 持有一个 ElizaSession，对外提供四个操作，全部只调用会话的公开接口：
- get_status：连接状态与当前配置
- list_agents：服务器上可用的智能体
- chat_with_agent：发送消息并等待回复
- set_agent：切换当前智能体与房间

每个操作返回缩进的 JSON 文本。参数的类型与描述写在方法签名上，
MCP 服务器注册时据此生成 inputSchema，不需要再手写 JSON Schema。

错误约定：
- chat_with_agent / set_agent 把会话错误转换为 {"error": true, "message": ...}
- get_status / list_agents 直接抛出，由 MCP 层报告为错误结果
"""

import json
from typing import Annotated, Any

from loguru import logger
from pydantic import Field

from elizalink.bus.events import ConnectionState
from elizalink.errors import ElizaLinkError
from elizalink.session.client import ElizaSession

# 工具名 → 描述
TOOL_DESCRIPTIONS = {
    "get_status": "Get the current status of the ElizaOS connection",
    "list_agents": "List all available agents in ElizaOS",
    "chat_with_agent": "Send a message to the selected agent and get a response",
    "set_agent": "Set the active agent and room for communication",
}


def _dumps(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def error_result(message: str) -> str:
    """构造错误对象的 JSON 文本。"""
    return _dumps({"error": True, "message": message})


class BridgeTools:
    """
    桥接工具集合。

    参数:
        session: 工具共享的会话（由进程入口创建并负责关闭）

    【Java 开发者类比】
    相当于一个无状态的 Service 门面，真正的状态都在 ElizaSession 里。
    """

    def __init__(self, session: ElizaSession):
        self.session = session

    async def get_status(self) -> str:
        """返回连接状态与会话配置。"""
        cfg = self.session.get_config()
        return _dumps({
            "connectionState": self.session.state.value,
            "currentAgent": cfg.agent_id,
            "currentRoom": cfg.room_id,
            "serverUrl": cfg.server_url,
            "userId": cfg.user_id,
            "worldId": cfg.world_id,
            "connectionTimeout": cfg.connection_timeout,
            "responseTimeout": cfg.response_timeout,
            "connectionTime": self.session.connection_time,
        })

    async def list_agents(self) -> str:
        return _dumps(await self.session.list_available_agents())

    async def chat_with_agent(
        self,
        message: Annotated[str, Field(description="The message to send to the agent.")],
    ) -> str:
        """
        向当前智能体发送消息并返回回复。

        未连接时先尝试连接；连接失败或等待超时时返回错误对象而不是抛出异常。
        """
        if not message:
            return error_result("Message is required.")

        try:
            if self.session.state != ConnectionState.CONNECTED:
                await self.session.connect()
            reply = await self.session.send_and_await(message)
        except ElizaLinkError as e:
            logger.error(f"chat_with_agent failed: {e}")
            return error_result(str(e) or "Unknown error in chat_with_agent")

        if not reply.ok:
            return error_result(reply.error)
        return _dumps({
            "text": reply.text or "No response text",
            "senderId": reply.sender_id or "unknown",
            "senderName": reply.sender_name or "unknown",
            "roomId": reply.room_id or "unknown",
        })

    async def set_agent(
        self,
        agent_id: Annotated[str, Field(description="The UUID of the agent to switch to.")],
        room_id: Annotated[str, Field(description="The UUID of the room to join (must match agent_id).")],
    ) -> str:
        """
        切换当前智能体与房间（两者必须相同）。

        通过 set_config 更新配置；只有会话最终处于 CONNECTED 才算成功。
        """
        if not agent_id or not room_id:
            return error_result("agent_id and room_id are required.")
        if agent_id != room_id:
            return error_result("For ElizaOS, agent_id and room_id must be identical.")

        old = self.session.get_config()
        try:
            await self.session.set_config(agent_id=agent_id, room_id=room_id)
        except ElizaLinkError as e:
            logger.error(f"set_agent failed: {e}")
            return error_result(str(e) or "Unknown error in set_agent")

        state = self.session.state
        if state != ConnectionState.CONNECTED:
            return error_result(
                f"Failed to establish connection with new agent {agent_id} after setting config. "
                f"Current state: {state.value}"
            )
        return _dumps({
            "success": True,
            "message": (
                f"Agent and room set successfully. Old agent/room: {old.agent_id}/{old.room_id}. "
                f"New agent/room: {agent_id}/{room_id}."
            ),
            "oldConfig": {"agentId": old.agent_id, "roomId": old.room_id},
            "newConfig": {"agentId": agent_id, "roomId": room_id},
        })
