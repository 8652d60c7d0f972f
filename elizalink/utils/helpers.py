"""
工具函数集合 - elizalink 项目全局通用的辅助函数。

函数分类：
- 路径管理：ensure_dir, get_data_path
- 字符串工具：truncate_string
- 时间/ID 工具：timestamp, now_ms, new_message_id
"""

import random
import string
import time
from datetime import datetime
from pathlib import Path

# 关联 ID 随机后缀使用的字符集（小写字母 + 数字，即 base36）
_ID_ALPHABET = string.ascii_lowercase + string.digits


def ensure_dir(path: Path) -> Path:
    """
    确保目录存在，不存在则递归创建。

    参数:
        path: 目标目录路径

    返回:
        创建后的目录路径（原样返回）
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """获取 elizalink 数据目录（~/.elizalink）。自动创建不存在的目录。"""
    return ensure_dir(Path.home() / ".elizalink")


def timestamp() -> str:
    """获取当前时间的 ISO 8601 格式字符串。"""
    return datetime.now().isoformat()


def now_ms() -> int:
    """当前 epoch 毫秒数。"""
    return int(time.time() * 1000)


def new_message_id(prefix: str = "mcp-msg") -> str:
    """
    生成一条出站消息的关联 ID。

    格式为 "<prefix>-<epoch 毫秒>-<7 位随机字符>"，例如 "mcp-msg-1700000000000-k3f9a0z"。
    该 ID 只用于日志诊断：服务端不会在回复中回显它，无法据此匹配回复。

    参数:
        prefix: ID 前缀

    返回:
        关联 ID 字符串
    """
    suffix = "".join(random.choices(_ID_ALPHABET, k=7))
    return f"{prefix}-{now_ms()}-{suffix}"


def truncate_string(s: str, max_len: int = 100, suffix: str = "...") -> str:
    """
    截断字符串到指定最大长度，超出时添加后缀。

    参数:
        s: 原始字符串
        max_len: 最大长度（包含后缀），默认 100
        suffix: 截断后缀，默认 "..."

    返回:
        截断后的字符串
    """
    if len(s) <= max_len:
        return s
    return s[: max_len - len(suffix)] + suffix
