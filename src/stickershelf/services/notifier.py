import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

ALL_PACKS = "*"

ChangeCallback = Callable[[str | None], None]


class ChangeNotifier:
    """
    进程内的表情包变更发布点。
    - 按表情包 identifier 订阅，ALL_PACKS 订阅所有变更
    - 事件参数为发生变更的 identifier；None 表示整体失效
    - 不持久化、不保证送达，查询层始终会重新校验仓库缓存
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[ChangeCallback]] = {}
        self._lock = threading.Lock()

    def subscribe(self, key: str, callback: ChangeCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers.setdefault(key, []).append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(key, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(key, None)

        return _unsubscribe

    def publish(self, pack_id: str | None = None) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(ALL_PACKS, []))
            if pack_id is not None and pack_id != ALL_PACKS:
                callbacks.extend(self._subscribers.get(pack_id, []))

        logger.debug("发布表情包变更: pack=%s subscribers=%s", pack_id, len(callbacks))
        for callback in callbacks:
            try:
                callback(pack_id)
            except Exception:  # noqa: BLE001
                logger.exception("变更订阅者处理失败: pack=%s", pack_id)
