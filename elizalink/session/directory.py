"""
智能体目录模块 - 通过 HTTP 查询 ElizaOS 服务器上可用的智能体列表。

这是一个无状态的查询：GET {server_url}/api/agents，
响应体中 data.agents 必须是数组，每个元素映射为 {"id", "name"}。
"""

from typing import Any

import httpx
from loguru import logger

from elizalink.errors import DirectoryError

AGENTS_PATH = "/api/agents"


class AgentDirectory:
    """
    智能体目录查询客户端。

    参数:
        server_url: ElizaOS 服务器地址
        client: 可选的 httpx.AsyncClient（测试时可注入 MockTransport）；
                未提供时按需创建，并由 close() 关闭
    """

    def __init__(self, server_url: str, client: httpx.AsyncClient | None = None, timeout: float = 30.0):
        self.server_url = server_url
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    @property
    def agents_url(self) -> str:
        return self.server_url.rstrip("/") + AGENTS_PATH

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def list_agents(self) -> list[dict[str, str]]:
        """
        获取可用智能体列表。

        返回:
            [{"id": ..., "name": ...}, ...]

        异常:
            DirectoryError: 响应中没有 data.agents 数组
            httpx.HTTPError: 网络或 HTTP 状态错误（记录日志后原样抛出）
        """
        url = self.agents_url
        logger.debug(f"Fetching agents from {url}")
        try:
            response = await self._get_client().get(url)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Error fetching agents list: {e}")
            raise
        except ValueError as e:
            logger.error(f"Agents response is not valid JSON: {e}")
            raise DirectoryError("Failed to fetch agents or malformed response") from e

        agents = _extract_agents(body)
        if agents is None:
            logger.error(f"Malformed agents response: {str(body)[:200]}")
            raise DirectoryError("Failed to fetch agents or malformed response")
        return [{"id": str(a.get("id", "")), "name": str(a.get("name", ""))} for a in agents]

    async def close(self) -> None:
        """关闭自己创建的 HTTP 客户端。外部注入的客户端由调用方负责关闭。"""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def _extract_agents(body: Any) -> list[dict[str, Any]] | None:
    data = body.get("data") if isinstance(body, dict) else None
    agents = data.get("agents") if isinstance(data, dict) else None
    if not isinstance(agents, list):
        return None
    return [a for a in agents if isinstance(a, dict)]
