"""CLI 模块 - elizalink 命令行入口。"""
