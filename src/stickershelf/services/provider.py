"""宿主读取表情包数据使用的查询协议。列名与路径是对外契约，不可修改。"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from stickershelf.core.errors import AssetNotFoundError
from stickershelf.core.models import PackSource, StickerPackManifest
from stickershelf.services.notifier import ALL_PACKS, ChangeNotifier
from stickershelf.services.repository import PackRepository

logger = logging.getLogger(__name__)

# 表情包元数据列
STICKER_PACK_IDENTIFIER_IN_QUERY = "sticker_pack_identifier"
STICKER_PACK_NAME_IN_QUERY = "sticker_pack_name"
STICKER_PACK_PUBLISHER_IN_QUERY = "sticker_pack_publisher"
STICKER_PACK_ICON_IN_QUERY = "sticker_pack_icon"
ANDROID_APP_DOWNLOAD_LINK_IN_QUERY = "android_play_store_link"
IOS_APP_DOWNLOAD_LINK_IN_QUERY = "ios_app_download_link"
PUBLISHER_EMAIL = "sticker_pack_publisher_email"
PUBLISHER_WEBSITE = "sticker_pack_publisher_website"
PRIVACY_POLICY_WEBSITE = "sticker_pack_privacy_policy_website"
LICENSE_AGREEMENT_WEBSITE = "sticker_pack_license_agreement_website"
IMAGE_DATA_VERSION = "image_data_version"
AVOID_CACHE = "whatsapp_will_not_cache_stickers"
ANIMATED_STICKER_PACK = "animated_sticker_pack"

# 贴纸列
STICKER_FILE_NAME_IN_QUERY = "sticker_file_name"
STICKER_FILE_EMOJI_IN_QUERY = "sticker_emoji"
STICKER_FILE_ACCESSIBILITY_TEXT_IN_QUERY = "sticker_accessibility_text"

METADATA = "metadata"
STICKERS = "stickers"
STICKERS_ASSET = "stickers_asset"

STICKER_MIME_TYPE = "image/webp"

PACK_COLUMNS = (
    STICKER_PACK_IDENTIFIER_IN_QUERY,
    STICKER_PACK_NAME_IN_QUERY,
    STICKER_PACK_PUBLISHER_IN_QUERY,
    STICKER_PACK_ICON_IN_QUERY,
    ANDROID_APP_DOWNLOAD_LINK_IN_QUERY,
    IOS_APP_DOWNLOAD_LINK_IN_QUERY,
    PUBLISHER_EMAIL,
    PUBLISHER_WEBSITE,
    PRIVACY_POLICY_WEBSITE,
    LICENSE_AGREEMENT_WEBSITE,
    IMAGE_DATA_VERSION,
    AVOID_CACHE,
    ANIMATED_STICKER_PACK,
)

STICKER_COLUMNS = (
    STICKER_FILE_NAME_IN_QUERY,
    STICKER_FILE_EMOJI_IN_QUERY,
    STICKER_FILE_ACCESSIBILITY_TEXT_IN_QUERY,
)

ObserverCallback = Callable[[str], None]


class UnknownQueryPathError(ValueError):
    """查询路径不属于协议定义的任何资源。"""


@dataclass(frozen=True, slots=True)
class QueryResult:
    columns: tuple[str, ...]
    rows: list[tuple[Any, ...]]
    notification_path: str

    def as_dicts(self) -> list[dict[str, Any]]:
        return [dict(zip(self.columns, row)) for row in self.rows]


@dataclass(frozen=True, slots=True)
class AssetResponse:
    pack_id: str
    file_name: str
    content: bytes
    mime_type: str = STICKER_MIME_TYPE


class StickerQueryProtocol:
    """
    将宿主的四类请求映射到 PackRepository：
    - metadata                    全部表情包
    - metadata/{pack_id}          单个表情包（0 或 1 行）
    - stickers/{pack_id}          表情包内贴纸
    - stickers_asset/{pack_id}/{file}  贴纸原始字节
    每次查询都会经过仓库的缓存校验；查询结果登记通知路径，表情包变更后通知对应观察者。
    """

    def __init__(
        self,
        repository: PackRepository,
        authority: str,
        notifier: ChangeNotifier | None = None,
    ) -> None:
        self._repository = repository
        self._authority = authority
        self._observers: dict[str, list[ObserverCallback]] = {}
        self._registered_paths: set[str] = set()
        self._lock = threading.Lock()
        self._unsubscribe: Callable[[], None] | None = None
        if notifier:
            self._unsubscribe = notifier.subscribe(ALL_PACKS, self._on_pack_changed)

    @property
    def authority(self) -> str:
        return self._authority

    async def query(self, path: str) -> QueryResult:
        segments = _split_path(path)
        logger.debug("查询请求: path=%s", path)

        if segments == [METADATA]:
            result = await self._query_all_packs()
        elif len(segments) == 2 and segments[0] == METADATA:
            result = await self._query_single_pack(segments[1])
        elif len(segments) == 2 and segments[0] == STICKERS:
            result = await self._query_stickers(segments[1])
        else:
            raise UnknownQueryPathError(f"未知的查询路径: {path}")

        self._register_path(result.notification_path)
        return result

    async def open_asset(self, pack_id: str, file_name: str) -> AssetResponse:
        """只返回对账后视图中列出的文件（贴纸或托盘图标），磁盘上存在但被排除的文件同样视为不存在。"""
        pack = await self._repository.find_pack(pack_id)
        if pack is None:
            raise AssetNotFoundError(f"表情包不存在: {pack_id}")

        if file_name != pack.tray_image_file and pack.find_sticker(file_name) is None:
            logger.debug("请求的文件不在表情包视图中: pack=%s file=%s", pack_id, file_name)
            raise AssetNotFoundError(f"贴纸不存在: {pack_id}/{file_name}")

        content = self._read_asset_bytes(pack, file_name)
        if content is None:
            raise AssetNotFoundError(f"贴纸文件缺失: {pack_id}/{file_name}")

        logger.debug("返回贴纸文件: pack=%s file=%s size=%s", pack_id, file_name, len(content))
        return AssetResponse(pack_id=pack_id, file_name=file_name, content=content)

    async def open_asset_path(self, path: str) -> AssetResponse:
        segments = _split_path(path)
        if len(segments) != 3 or segments[0] != STICKERS_ASSET:
            raise UnknownQueryPathError(f"无效的贴纸路径: {path}")
        return await self.open_asset(segments[1], segments[2])

    def get_type(self, path: str) -> str:
        segments = _split_path(path)
        if segments == [METADATA]:
            return f"vnd.android.cursor.dir/vnd.{self._authority}.{METADATA}"
        if len(segments) == 2 and segments[0] == METADATA:
            return f"vnd.android.cursor.item/vnd.{self._authority}.{METADATA}"
        if len(segments) == 2 and segments[0] == STICKERS:
            return f"vnd.android.cursor.dir/vnd.{self._authority}.{STICKERS}"
        if len(segments) == 3 and segments[0] == STICKERS_ASSET:
            return STICKER_MIME_TYPE
        raise UnknownQueryPathError(f"未知的查询路径: {path}")

    def observe(self, path: str, callback: ObserverCallback) -> Callable[[], None]:
        """宿主侧观察某个资源路径，路径对应的数据变化后会收到回调。"""
        normalized = "/".join(_split_path(path))
        with self._lock:
            self._observers.setdefault(normalized, []).append(callback)

        def _cancel() -> None:
            with self._lock:
                callbacks = self._observers.get(normalized, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._observers.pop(normalized, None)

        return _cancel

    def registered_paths(self) -> set[str]:
        with self._lock:
            return set(self._registered_paths)

    def close(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def notify_change(self, path: str) -> None:
        normalized = "/".join(_split_path(path))
        with self._lock:
            callbacks = list(self._observers.get(normalized, []))
        for callback in callbacks:
            try:
                callback(normalized)
            except Exception:  # noqa: BLE001
                logger.exception("查询观察者回调失败: path=%s", normalized)

    async def _query_all_packs(self) -> QueryResult:
        packs = await self._repository.list_packs()
        return QueryResult(
            columns=PACK_COLUMNS,
            rows=[_pack_row(pack) for pack in packs],
            notification_path=METADATA,
        )

    async def _query_single_pack(self, pack_id: str) -> QueryResult:
        pack = await self._repository.find_pack(pack_id)
        if pack is None:
            logger.debug("查询的表情包不存在: %s", pack_id)
        return QueryResult(
            columns=PACK_COLUMNS,
            rows=[_pack_row(pack)] if pack else [],
            notification_path=f"{METADATA}/{pack_id}",
        )

    async def _query_stickers(self, pack_id: str) -> QueryResult:
        pack = await self._repository.find_pack(pack_id)
        rows = []
        if pack:
            rows = [
                (
                    sticker.image_file,
                    ",".join(sticker.emojis),
                    sticker.accessibility_text,
                )
                for sticker in pack.stickers
            ]
        return QueryResult(
            columns=STICKER_COLUMNS,
            rows=rows,
            notification_path=f"{STICKERS}/{pack_id}",
        )

    def _read_asset_bytes(self, pack: StickerPackManifest, file_name: str) -> bytes | None:
        if pack.source == PackSource.BUNDLED:
            bundled = self._repository.bundled
            return bundled.read_asset(pack.identifier, file_name) if bundled else None
        return self._repository.store.read_asset(pack.identifier, file_name)

    def _register_path(self, path: str) -> None:
        with self._lock:
            self._registered_paths.add(path)

    def _on_pack_changed(self, pack_id: str | None) -> None:
        with self._lock:
            registered = set(self._registered_paths)

        if pack_id is None:
            affected = registered | {METADATA}
        else:
            affected = {METADATA, f"{METADATA}/{pack_id}", f"{STICKERS}/{pack_id}"}

        for path in sorted(affected):
            self.notify_change(path)
        logger.debug("已通知查询观察者: pack=%s paths=%s", pack_id, len(affected))


def _pack_row(pack: StickerPackManifest) -> tuple[Any, ...]:
    return (
        pack.identifier,
        pack.name,
        pack.publisher,
        pack.tray_image_file,
        pack.android_play_store_link,
        pack.ios_app_store_link,
        pack.publisher_email,
        pack.publisher_website,
        pack.privacy_policy_website,
        pack.license_agreement_website,
        pack.image_data_version,
        1 if pack.avoid_cache else 0,
        1 if pack.animated_sticker_pack else 0,
    )


def _split_path(path: str) -> list[str]:
    return [segment for segment in path.strip().strip("/").split("/") if segment]
