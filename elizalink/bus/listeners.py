"""
观察者注册表模块 - 会话向外部广播状态变化、入站消息和错误的通道。

本模块实现了 ListenerRegistry 类，采用"发布-订阅"模式：
外部通过 subscribe() 按主题注册回调，会话通过 emit() 通知该主题下的所有回调。

主题（topic）：
- state：连接状态变化，回调参数为 ConnectionState
- message：收到的每一条入站消息（无论是否为有效回复），回调参数为 InboundReply
- error：会话错误，回调参数为 Exception

【核心设计】
每个回调的调用都是相互隔离的：单个回调抛出异常只记录日志，
不会中断其他回调的通知，也不会让会话本身崩溃。
回调可以是普通函数，也可以是协程函数；协程会被调度为后台任务，
其异常同样只记录日志。

【Java 开发者类比】
- subscribe/emit 类似于 Spring 的 ApplicationEventPublisher + @EventListener
"""

import asyncio
import inspect
from typing import Any, Callable

from loguru import logger

Listener = Callable[[Any], Any]


class ListenerRegistry:
    """
    按主题分组的回调注册表。

    属性:
        _listeners: 订阅者字典 {主题: [回调函数列表]}
        _tasks: 协程回调对应的后台任务（保持引用直到完成）
    """

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = {}
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, topic: str, callback: Listener) -> Listener:
        """
        订阅指定主题。同一主题可以注册多个回调，按注册顺序调用。

        参数:
            topic: 主题名称
            callback: 回调函数（同步或异步）

        返回:
            原回调函数，便于当作装饰器使用
        """
        self._listeners.setdefault(topic, []).append(callback)
        return callback

    def unsubscribe(self, topic: str, callback: Listener) -> None:
        """取消订阅。回调不存在时静默忽略。"""
        callbacks = self._listeners.get(topic, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def emit(self, topic: str, value: Any) -> None:
        """
        通知某主题下的所有回调。

        参数:
            topic: 主题名称
            value: 传给回调的参数
        """
        for callback in list(self._listeners.get(topic, [])):
            try:
                result = callback(value)
            except Exception as e:
                # 单个回调异常不影响其他订阅者
                logger.error(f"Error in {topic} listener: {e}")
                continue
            if inspect.isawaitable(result):
                self._schedule(topic, result)

    def _schedule(self, topic: str, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(f"Error in async {topic} listener: {t.exception()}")

        task.add_done_callback(_done)

    def count(self, topic: str) -> int:
        """获取某主题的回调数量。"""
        return len(self._listeners.get(topic, []))
