"""
互动事件定义与事件广播
"""
import asyncio
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Set

from engagement.utils.clock import utc_now

# 事件动词
VERB_FOLLOW = "follow"
VERB_UNFOLLOW = "unfollow"
VERB_LIKE = "like"
VERB_UNLIKE = "unlike"
VERB_COMMENT = "comment"
VERB_SHARE = "share"


@dataclass(frozen=True)
class RelationshipChanged:
    """
    一次社交动作产生的事件

    由关系账本在状态真正改变后产生，计数存储与通知分发在同一事务中消费。
    每次调用产生一个新的 event_id，通知按 (event_id, recipient) 去重。
    """
    verb: str
    actor_id: int
    target_type: str  # user / video / comment
    target_id: int
    target_owner_id: Optional[int] = None
    video_id: Optional[int] = None
    comment_id: Optional[int] = None
    parent_author_id: Optional[int] = None
    delta: int = 1
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=utc_now)


class EngagementEventBus:
    """维护每个接收者的事件订阅队列，供推送层消费已创建的通知"""

    def __init__(self) -> None:
        self._listeners: Dict[int, Set[asyncio.Queue]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def register(self, recipient_id: int) -> asyncio.Queue:
        """注册一个新的事件监听队列"""
        queue: asyncio.Queue = asyncio.Queue()
        async with self._lock:
            self._listeners[recipient_id].add(queue)
        return queue

    async def unregister(self, recipient_id: int, queue: asyncio.Queue) -> None:
        async with self._lock:
            listeners = self._listeners.get(recipient_id)
            if not listeners:
                return
            listeners.discard(queue)
            if not listeners:
                self._listeners.pop(recipient_id, None)

    async def publish(self, recipient_id: int, event: Dict[str, Any]) -> None:
        """向指定接收者广播事件"""
        async with self._lock:
            listeners = list(self._listeners.get(recipient_id, set()))
        for queue in listeners:
            await queue.put(event)

    async def close(self, recipient_id: int) -> None:
        async with self._lock:
            listeners = list(self._listeners.pop(recipient_id, set()))
        for queue in listeners:
            await queue.put({"type": "stream_closed", "data": {}})


# 全局事件总线实例
event_bus = EngagementEventBus()
