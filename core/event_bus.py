import asyncio
import logging
from collections import defaultdict
from typing import Callable, Any, Dict, List
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


class EventBus:
    """
    进程内事件总线

    - 按事件名订阅 / 发布
    - "*" 订阅所有事件
    - publish(wait=True) 按顺序执行处理器并向调用方抛出其异常；
      wait=False 只调度执行并记录失败
    - 按事件计数
    """

    # 发布时记日志的事件前缀
    LOG_EVENT_PREFIXES = ("SOURCE_", "VIDEO_", "CHAT_")

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Callable]] = defaultdict(list)
        self._wildcard_listeners: List[Callable] = []
        self._stats: Dict[str, int] = defaultdict(int)
        self._last_event_time: Dict[str, datetime] = {}
        self._pending: set = set()

    def subscribe(self, event_type: str, handler: Callable) -> None:
        """注册同步或异步处理器；"*" 接收所有事件"""
        if event_type == "*":
            self._wildcard_listeners.append(handler)
            logger.debug(f"已注册通配监听器: {getattr(handler, '__name__', handler)}")
        else:
            self._listeners[event_type].append(handler)
            logger.debug(f"已注册事件监听器: {event_type} -> {getattr(handler, '__name__', handler)}")

    def unsubscribe(self, event_type: str, handler: Callable) -> None:
        if event_type == "*":
            if handler in self._wildcard_listeners:
                self._wildcard_listeners.remove(handler)
        elif handler in self._listeners[event_type]:
            self._listeners[event_type].remove(handler)

    async def publish(self, event_type: str, data: Any = None, wait: bool = False) -> None:
        self._stats[event_type] += 1
        self._last_event_time[event_type] = datetime.now(timezone.utc)

        if self._should_log(event_type):
            logger.debug(f"事件: {event_type}")

        handlers = self._listeners.get(event_type, []) + self._wildcard_listeners
        if not handlers:
            return

        if wait:
            # 关键路径：处理器异常直接抛给调用方
            for handler in handlers:
                result = handler(data)
                if asyncio.iscoroutine(result):
                    await result
        else:
            for handler in handlers:
                task = asyncio.create_task(self._safe_execute(handler, event_type, data))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)

    async def _safe_execute(self, handler: Callable, event_type: str, data: Any) -> None:
        try:
            result = handler(data)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(
                f"事件处理器出错 [{getattr(handler, '__name__', handler)}] {event_type}: {e}",
                exc_info=True,
            )

    async def drain(self) -> None:
        """等待目前已调度的后台处理器执行完毕"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _should_log(self, event_type: str) -> bool:
        return any(event_type.startswith(prefix) for prefix in self.LOG_EVENT_PREFIXES)

    def get_stats(self) -> Dict:
        return {
            "event_counts": dict(self._stats),
            "total_events": sum(self._stats.values()),
            "unique_event_types": len(self._stats),
            "listener_counts": {
                event: len(handlers) for event, handlers in self._listeners.items()
            },
            "wildcard_listeners": len(self._wildcard_listeners),
            "last_events": {
                event: ts.isoformat() for event, ts in self._last_event_time.items()
            },
        }

    def clear_stats(self) -> None:
        self._stats.clear()
        self._last_event_time.clear()
