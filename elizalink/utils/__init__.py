"""
工具函数模块 - 提供 elizalink 项目全局通用的辅助函数。

本模块包含：
- helpers：路径、时间戳、关联 ID、字符串截断
- logging：loguru 日志 sink 与过滤配置
"""

from elizalink.utils.helpers import ensure_dir, get_data_path, new_message_id, truncate_string

__all__ = ["ensure_dir", "get_data_path", "new_message_id", "truncate_string"]
