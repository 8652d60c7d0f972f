"""
配置模块 (config)
================
本模块是 elizalink 的配置系统入口，负责：
1. 定义配置数据模型（schema.py）：使用 Pydantic 定义所有配置项的结构和默认值
2. 加载/保存配置文件（loader.py）：从 JSON 文件和 ELIZAOS_* 环境变量读取配置
"""

from elizalink.config.loader import get_config_path, load_config
from elizalink.config.schema import Config, LoggingConfig, SessionConfig, TransportConfig

__all__ = ["Config", "SessionConfig", "TransportConfig", "LoggingConfig", "load_config", "get_config_path"]
