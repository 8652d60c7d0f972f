"""
CLI 命令模块 - elizalink 的所有命令行命令定义。

本模块使用 Typer 框架定义 elizalink 的 CLI 命令体系：
- status：查看配置与身份信息
- agents：列出服务器上的智能体
- chat：与当前智能体对话（单条消息或交互式对话）
- tools：打印 MCP 工具列表
- serve：在 stdio 上启动 MCP 服务器（供 MCP 客户端调用）

技术栈：
- Typer：CLI 框架（基于 Click，支持类型注解自动生成帮助文档）
- Rich：终端美化输出（Markdown 渲染、表格）
- prompt_toolkit：交互式输入（历史记录、行编辑）
- mcp：FastMCP 服务器（serve / tools 命令）

进程入口负责的事情都在这里完成：加载配置、配置日志、处理信号。
会话引擎本身从不读取环境变量，也不会结束进程。
"""

import asyncio
import json
import signal

import httpx
import typer
from loguru import logger
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table
from rich.text import Text

from elizalink import __logo__, __version__
from elizalink.config.schema import Config

# 创建 Typer 应用实例（CLI 根命令）
app = typer.Typer(
    name="elizalink",
    help=f"{__logo__} elizalink - ElizaOS agent bridge",
    no_args_is_help=True,
)

console = Console()
EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit", ":q"}

_PROMPT_SESSION: PromptSession | None = None


def _init_prompt_session() -> None:
    """创建 prompt_toolkit 会话，历史记录保存在 ~/.elizalink/history/cli_history。"""
    global _PROMPT_SESSION
    from elizalink.utils.helpers import ensure_dir, get_data_path

    history_file = ensure_dir(get_data_path() / "history") / "cli_history"
    _PROMPT_SESSION = PromptSession(
        history=FileHistory(str(history_file)),
        enable_open_in_editor=False,
        multiline=False,
    )


async def _read_interactive_input_async() -> str:
    if _PROMPT_SESSION is None:
        raise RuntimeError("Call _init_prompt_session() first")
    try:
        with patch_stdout():
            return await _PROMPT_SESSION.prompt_async(HTML("<b fg='ansiblue'>You:</b> "))
    except EOFError as exc:
        raise KeyboardInterrupt from exc


def _is_exit_command(command: str) -> bool:
    return command.lower() in EXIT_COMMANDS


def _print_agent_response(name: str, response: str, render_markdown: bool) -> None:
    """以一致的终端样式渲染智能体回复。"""
    body = Markdown(response or "") if render_markdown else Text(response or "")
    console.print()
    console.print(f"[cyan]{__logo__} {name}[/cyan]")
    console.print(body)
    console.print()


def version_callback(value: bool):
    """版本号回调：传入 --version/-v 时打印版本号并退出。"""
    if value:
        console.print(f"{__logo__} elizalink v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """elizalink CLI 根命令回调。"""
    pass


# ============================================================================
# 公共启动逻辑
# ============================================================================


def _load(logs: bool) -> Config:
    """加载配置并配置日志。logs=False 时关闭 elizalink 的日志输出。"""
    from elizalink.config.loader import load_config
    from elizalink.utils.logging import setup_logging

    config = load_config()
    setup_logging(config.logging)
    if logs:
        logger.enable("elizalink")
    else:
        logger.disable("elizalink")
    return config


def _require_identity(config: Config) -> None:
    missing = config.missing_identity()
    if missing:
        names = ", ".join(f"ELIZAOS_{name.upper()}" for name in missing)
        console.print(f"[red]Error: missing required configuration: {names}[/red]")
        raise typer.Exit(1)


def _make_session(config: Config):
    from elizalink.session.client import ElizaSession

    return ElizaSession(config.to_session_config(), config.transport)


# ============================================================================
# Status / Agents
# ============================================================================


@app.command()
def status():
    """显示配置文件路径、服务器地址与会话身份。"""
    from elizalink.config.loader import get_config_path

    config_path = get_config_path()
    config = _load(logs=False)

    console.print(f"{__logo__} elizalink Status\n")
    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[dim]not found[/dim]'}")

    table = Table()
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for name in ("server_url", "user_id", "world_id", "agent_id", "room_id"):
        value = getattr(config, name)
        table.add_row(name, value or "[dim]not set[/dim]")
    table.add_row("connection_timeout", f"{config.connection_timeout}ms")
    table.add_row("response_timeout", f"{config.response_timeout}ms")
    console.print(table)

    if config.agent_id and config.agent_id != config.room_id:
        console.print("[yellow]Warning: agent_id and room_id must be identical[/yellow]")


@app.command()
def agents(
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show runtime logs"),
):
    """列出服务器上可用的智能体。"""
    from elizalink.errors import DirectoryError
    from elizalink.session.directory import AgentDirectory

    config = _load(logs)
    directory = AgentDirectory(config.server_url)

    async def run():
        try:
            return await directory.list_agents()
        finally:
            await directory.close()

    try:
        found = asyncio.run(run())
    except (DirectoryError, httpx.HTTPError) as e:
        console.print(f"[red]Failed to list agents: {e}[/red]")
        raise typer.Exit(1)

    if not found:
        console.print("No agents found.")
        return
    table = Table(title="Agents")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    for item in found:
        marker = " [green]✓[/green]" if item["id"] == config.agent_id else ""
        table.add_row(item["id"], item["name"] + marker)
    console.print(table)


# ============================================================================
# Chat
# ============================================================================


@app.command()
def chat(
    message: str = typer.Option(None, "--message", "-m", help="Message to send to the agent"),
    agent: str = typer.Option(None, "--agent", "-a", help="Agent ID (also used as room ID)"),
    markdown: bool = typer.Option(True, "--markdown/--no-markdown", help="Render agent output as Markdown"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show runtime logs during chat"),
):
    """
    与当前智能体对话。

    支持两种使用方式：
    1. 单条消息模式：elizalink chat -m "你好" → 直接返回回复
    2. 交互模式：elizalink chat → 进入交互式对话循环（exit/quit 或 Ctrl+C 退出）
    """
    from elizalink.errors import ElizaLinkError

    config = _load(logs)
    _require_identity(config)
    if agent:
        config.agent_id = config.room_id = agent
    session = _make_session(config)

    def _thinking_ctx():
        if logs:
            from contextlib import nullcontext
            return nullcontext()
        return console.status("[dim]waiting for agent...[/dim]", spinner="dots")

    async def ask(text: str) -> None:
        with _thinking_ctx():
            reply = await session.send_and_await(text)
        if reply.ok:
            _print_agent_response(reply.sender_name or "agent", reply.text or "", markdown)
        else:
            console.print(f"[yellow]{reply.error}[/yellow]")

    async def run_once():
        try:
            await session.connect()
            await ask(message)
        finally:
            await session.close()

    async def run_interactive():
        _init_prompt_session()
        console.print(f"{__logo__} Interactive mode (type [bold]exit[/bold] or [bold]Ctrl+C[/bold] to quit)\n")
        try:
            await session.connect()
            while True:
                try:
                    user_input = await _read_interactive_input_async()
                except KeyboardInterrupt:
                    break
                command = user_input.strip()
                if not command:
                    continue
                if _is_exit_command(command):
                    break
                await ask(command)
        finally:
            console.print("\nGoodbye!")
            await session.close()

    try:
        asyncio.run(run_once() if message else run_interactive())
    except ElizaLinkError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


# ============================================================================
# Tools / Serve
# ============================================================================


@app.command()
def tools():
    """打印 MCP 服务器注册的工具列表（JSON）。"""
    from elizalink.server.mcp_server import build_server

    config = _load(logs=False)
    server = build_server(_make_session(config))
    listed = asyncio.run(server.list_tools())
    console.print_json(json.dumps([t.model_dump(mode="json", exclude_none=True) for t in listed]))


@app.command()
def serve(
    logs: bool = typer.Option(True, "--logs/--no-logs", help="Write runtime logs to stderr"),
):
    """
    启动 MCP 服务器（stdio）。

    启动时若已配置 agent_id/room_id 则先建立连接（失败只记录日志，服务器照常启动），
    收到 SIGINT/SIGTERM 或 stdin 关闭时断开会话并退出。stdout 只输出协议数据。
    """
    from elizalink.errors import ElizaLinkError
    from elizalink.server.mcp_server import build_server, serve_stdio

    config = _load(logs)
    _require_identity(config)
    session = _make_session(config)
    server = build_server(session)

    async def run():
        loop = asyncio.get_running_loop()
        serve_task = asyncio.current_task()

        def _shutdown(signum: int) -> None:
            logger.info(f"Received signal {signal.Signals(signum).name}, shutting down")
            serve_task.cancel()

        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, _shutdown, signum)

        try:
            if config.agent_id and config.room_id:
                try:
                    await session.connect()
                except ElizaLinkError as e:
                    logger.error(f"Initial connection failed: {e}")
            else:
                logger.warning("agent_id/room_id not configured; use set_agent to choose an agent")
            await serve_stdio(server)
        except asyncio.CancelledError:
            pass
        finally:
            await session.close()
            logger.info("Shutdown complete")

    asyncio.run(run())


if __name__ == "__main__":
    app()
