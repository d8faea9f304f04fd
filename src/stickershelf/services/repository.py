import asyncio
import logging
from collections.abc import Iterable, Sequence

from stickershelf.core.errors import MalformedManifestError
from stickershelf.core.models import (
    PLACEHOLDER_EMOJI,
    Discovery,
    GeneratedDiscovery,
    InvalidDiscovery,
    StickerAsset,
    StickerPackManifest,
)
from stickershelf.services.asset_store import AssetStore
from stickershelf.services.bundled import BundledPackSource
from stickershelf.services.notifier import ChangeNotifier

logger = logging.getLogger(__name__)

ADOPTED_ACCESSIBILITY_TEXT = "Custom sticker"


class PackRepository:
    """
    合并内置表情包与动态生成表情包，得到唯一的表情包列表。
    合并结果惰性计算并缓存，直到显式 invalidate()；缓存以整体替换的方式发布，
    并发读者要么拿到旧列表，要么拿到完整的新列表。
    """

    def __init__(
        self,
        store: AssetStore,
        bundled: BundledPackSource | None = None,
        generated_prefixes: Sequence[str] = ("custom_", "colorstickers_"),
        notifier: ChangeNotifier | None = None,
    ) -> None:
        self._store = store
        self._bundled = bundled
        self._generated_prefixes = tuple(generated_prefixes)
        self._notifier = notifier
        self._generation = 0
        self._snapshot: tuple[int, tuple[StickerPackManifest, ...]] | None = None
        self._recompute_lock = asyncio.Lock()

    @property
    def store(self) -> AssetStore:
        return self._store

    @property
    def bundled(self) -> BundledPackSource | None:
        return self._bundled

    @property
    def generated_prefixes(self) -> tuple[str, ...]:
        return self._generated_prefixes

    async def list_packs(self) -> tuple[StickerPackManifest, ...]:
        snapshot = self._snapshot
        if snapshot is not None and snapshot[0] == self._generation:
            return snapshot[1]

        async with self._recompute_lock:
            # 等锁期间可能已有其他任务完成了重算
            snapshot = self._snapshot
            generation = self._generation
            if snapshot is not None and snapshot[0] == generation:
                return snapshot[1]

            packs = await asyncio.to_thread(self.discover_all)
            self._snapshot = (generation, packs)
            logger.info("表情包列表已重新计算: count=%s", len(packs))
            return packs

    async def find_pack(self, pack_id: str) -> StickerPackManifest | None:
        for pack in await self.list_packs():
            if pack.identifier == pack_id:
                return pack
        logger.debug("表情包不存在: %s", pack_id)
        return None

    def invalidate(self, pack_id: str | None = None) -> None:
        self._generation += 1
        logger.debug("表情包缓存已失效: pack=%s generation=%s", pack_id, self._generation)
        if self._notifier:
            self._notifier.publish(pack_id)

    def is_generated_pack_id(self, name: str) -> bool:
        return name.startswith(self._generated_prefixes)

    def discover_all(self) -> tuple[StickerPackManifest, ...]:
        discoveries: list[Discovery] = []
        if self._bundled:
            discoveries.extend(self._bundled.discover())
        discoveries.extend(self.discover_generated())
        return reconcile(discoveries)

    def discover_generated(self) -> list[Discovery]:
        discoveries: list[Discovery] = []
        for name in sorted(self._store.list_pack_directories()):
            if not self.is_generated_pack_id(name):
                continue
            if not self._store.has_manifest(name):
                logger.debug("目录不是有效的表情包（缺少 pack_info.json）: %s", name)
                continue
            try:
                manifest = self.read_generated_pack(name)
            except MalformedManifestError as exc:
                discoveries.append(InvalidDiscovery(exc.location, exc.reason))
                continue
            except OSError as exc:
                discoveries.append(InvalidDiscovery(name, f"读取失败: {exc}"))
                continue
            if manifest is None:
                continue

            tray_missing = self._store.asset_size(name, manifest.tray_image_file) is None
            discoveries.append(GeneratedDiscovery(manifest, tray_missing=tray_missing))
        return discoveries

    def read_pack_document(self, pack_id: str) -> StickerPackManifest | None:
        """磁盘上的 pack_info.json 原样读出（不与目录对账），identifier 必须与目录名一致。"""
        manifest = self._store.read_manifest(pack_id)
        if manifest is None:
            return None
        if manifest.identifier != pack_id:
            raise MalformedManifestError(
                pack_id,
                f"identifier {manifest.identifier!r} 与目录名不一致",
            )
        return manifest

    def read_generated_pack(self, pack_id: str) -> StickerPackManifest | None:
        """
        直接从磁盘读取单个动态表情包，并与目录中的实际文件对账：
        - 描述文件中列出但文件缺失的贴纸被排除
        - 目录中存在但未列出的贴纸以占位 emoji 补入
        不做贴纸数量过滤，也不经过缓存。
        """
        manifest = self.read_pack_document(pack_id)
        if manifest is None:
            return None

        stickers: list[StickerAsset] = []
        listed: set[str] = set()
        for sticker in manifest.stickers:
            if sticker.image_file in listed:
                continue
            size = self._store.asset_size(pack_id, sticker.image_file)
            if size is None:
                logger.debug(
                    "贴纸文件缺失，已从视图排除: pack=%s file=%s",
                    pack_id,
                    sticker.image_file,
                )
                continue
            listed.add(sticker.image_file)
            stickers.append(sticker.with_size(size))

        for file_name in self._store.list_asset_files(pack_id):
            if file_name in listed or file_name == manifest.tray_image_file:
                continue
            size = self._store.asset_size(pack_id, file_name)
            if size is None:
                continue
            logger.debug("发现未登记的贴纸文件，已补入视图: pack=%s file=%s", pack_id, file_name)
            listed.add(file_name)
            stickers.append(
                StickerAsset(
                    image_file=file_name,
                    emojis=(PLACEHOLDER_EMOJI,),
                    accessibility_text=ADOPTED_ACCESSIBILITY_TEXT,
                    size=size,
                )
            )

        return manifest.with_stickers(stickers)


def reconcile(discoveries: Iterable[Discovery]) -> tuple[StickerPackManifest, ...]:
    """
    按扫描顺序合并各来源的发现结果。
    - Invalid 结果记录日志后丢弃
    - 没有任何可用贴纸的表情包不参与合并
    - identifier 重复时后扫描到的条目覆盖先前条目，并沿用先前条目的位置
    """
    merged: list[StickerPackManifest] = []
    positions: dict[str, int] = {}

    for discovery in discoveries:
        if isinstance(discovery, InvalidDiscovery):
            logger.warning(
                "跳过无效表情包: location=%s reason=%s",
                discovery.location,
                discovery.reason,
            )
            continue

        manifest = discovery.manifest
        if not manifest.stickers:
            logger.debug("表情包没有可用贴纸，已忽略: %s", manifest.identifier)
            continue
        if isinstance(discovery, GeneratedDiscovery) and discovery.tray_missing:
            logger.warning(
                "表情包托盘图标缺失: pack=%s tray=%s",
                manifest.identifier,
                manifest.tray_image_file,
            )

        existing = positions.get(manifest.identifier)
        if existing is not None:
            logger.info(
                "表情包标识重复，以后扫描到的为准: pack=%s previous=%s current=%s",
                manifest.identifier,
                merged[existing].source.value,
                manifest.source.value,
            )
            merged[existing] = manifest
            continue

        positions[manifest.identifier] = len(merged)
        merged.append(manifest)

    return tuple(merged)

