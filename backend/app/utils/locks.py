from __future__ import annotations

import threading
import weakref
from contextlib import contextmanager
from typing import Iterator


# threading.Lock 不支持弱引用，包一层放进注册表
class _StoryLock:
    def __init__(self) -> None:
        self.lock = threading.Lock()


_registry_lock = threading.Lock()
# 无人持有的故事锁会被回收，注册表不会随故事数增长
_story_locks: "weakref.WeakValueDictionary[str, _StoryLock]" = weakref.WeakValueDictionary()


def _lock_for(story_id: str) -> _StoryLock:
    with _registry_lock:
        entry = _story_locks.get(story_id)
        if entry is None:
            entry = _StoryLock()
            _story_locks[story_id] = entry
        return entry


# 同一进程内按故事串行化章节号检查与章节创建
@contextmanager
def story_lock(story_id: str) -> Iterator[None]:
    entry = _lock_for(story_id)
    with entry.lock:
        yield
