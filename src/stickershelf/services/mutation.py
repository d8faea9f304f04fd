import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from enum import Enum

from stickershelf.core.errors import MalformedManifestError, UnsupportedMediaError
from stickershelf.core.models import PackSource, PendingAsset, StickerAsset, StickerPackManifest
from stickershelf.core.ports import HostNotifier, TrayRenderer
from stickershelf.services.asset_store import generate_sticker_file_name
from stickershelf.services.pending import PendingAssetStore
from stickershelf.services.repository import PackRepository
from stickershelf.utils.files import is_safe_name

logger = logging.getLogger(__name__)

DEFAULT_TRAY_FILE_NAME = "tray_icon.webp"
CUSTOM_PACK_PREFIX = "custom_"


class MutationErrorKind(str, Enum):
    PACK_NOT_FOUND = "pack_not_found"
    SOURCE_MISSING = "source_missing"
    IO_FAILURE = "io_failure"
    PERSIST_FAILED = "persist_failed"


class PipelineStage(str, Enum):
    RESOLVING = "resolving"
    COPYING = "copying"
    MANIFEST_UPDATING = "manifest_updating"
    PERSISTED = "persisted"
    TRAY_UPDATING = "tray_updating"
    INVALIDATED = "invalidated"
    HOST_NOTIFIED = "host_notified"


@dataclass(frozen=True, slots=True)
class MutationResult:
    pack_id: str
    stage: PipelineStage
    error: MutationErrorKind | None = None
    sticker: StickerAsset | None = None
    manifest: StickerPackManifest | None = None
    tray_updated: bool = False
    host_notification: "asyncio.Task[bool] | None" = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class _PackLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class MutationPipeline:
    """
    把暂存区贴纸追加到已有表情包：
    解析表情包 -> 复制文件 -> 更新清单 -> 持久化 -> (更新托盘图标) -> 失效缓存 -> (通知宿主)。
    任一步失败即停止，已完成的步骤不回滚；清单持久化是最后一个修改步骤，
    失败时宿主看到的仍是上一次完整写入的清单。
    同一表情包的运行串行执行，不同表情包之间互不阻塞。
    """

    def __init__(
        self,
        repository: PackRepository,
        pending_store: PendingAssetStore,
        tray_renderer: TrayRenderer | None = None,
        host_notifier: HostNotifier | None = None,
        discard_promoted: bool = True,
    ) -> None:
        self._repository = repository
        self._store = repository.store
        self._pending_store = pending_store
        self._tray_renderer = tray_renderer
        self._host_notifier = host_notifier
        self._discard_promoted = discard_promoted
        self._pack_locks: dict[str, _PackLock] = {}
        self._background_tasks: set[asyncio.Task[bool]] = set()

    @property
    def busy_packs(self) -> set[str]:
        """当前有运行持有或等待锁的表情包。"""
        return set(self._pack_locks)

    async def add_asset_to_pack(
        self,
        pack_id: str,
        pending: PendingAsset,
        regenerate_tray: bool = False,
        notify_host: bool = False,
    ) -> MutationResult:
        if not self._is_writable_pack_id(pack_id):
            logger.warning("不是可写入的动态表情包（内置表情包只读，或目录名不符合约定）: %r", pack_id)
            return _failed(pack_id, PipelineStage.RESOLVING, MutationErrorKind.PACK_NOT_FOUND)

        async with self._pack_lock(pack_id):
            result = await self._add_asset_locked(pack_id, pending, regenerate_tray)

        if result.ok and notify_host:
            result = replace(
                result,
                stage=PipelineStage.HOST_NOTIFIED,
                host_notification=self.schedule_host_notification(pack_id),
            )
        return result

    async def create_pack(
        self,
        name: str,
        publisher: str,
        publisher_email: str = "",
        publisher_website: str = "",
        privacy_policy_website: str = "",
        license_agreement_website: str = "",
        initial: Sequence[PendingAsset] = (),
    ) -> StickerPackManifest:
        """
        创建表情包。initial 中的暂存贴纸按顺序直接写入新表情包，
        托盘图标由第一张贴纸缩放得到，没有贴纸或缩放失败时使用占位图标。
        没有贴纸的表情包不会出现在宿主视图中。
        """
        renderer = self._tray_renderer
        if renderer is None:
            raise RuntimeError("未配置托盘图标渲染器，无法创建表情包")

        prefixes = self._repository.generated_prefixes
        prefix = prefixes[0] if prefixes else CUSTOM_PACK_PREFIX
        pack_id = f"{prefix}{uuid.uuid4().hex[:8]}"

        async with self._pack_lock(pack_id):
            promoted: list[PendingAsset] = []
            stickers: list[StickerAsset] = []
            first_content: bytes | None = None
            for pending in initial:
                content = await asyncio.to_thread(self._pending_store.read_bytes, pending.image_file)
                if content is None:
                    logger.warning("暂存贴纸文件不存在，跳过: pack=%s file=%s", pack_id, pending.image_file)
                    continue
                file_name = generate_sticker_file_name()
                await asyncio.to_thread(self._store.write_asset, pack_id, file_name, content)
                stickers.append(pending.to_sticker(file_name, len(content)))
                promoted.append(pending)
                if first_content is None:
                    first_content = content

            tray = await self._initial_tray(renderer, pack_id, first_content)
            await asyncio.to_thread(self._store.write_asset, pack_id, DEFAULT_TRAY_FILE_NAME, tray)

            manifest = StickerPackManifest(
                identifier=pack_id,
                name=name,
                publisher=publisher,
                tray_image_file=DEFAULT_TRAY_FILE_NAME,
                publisher_email=publisher_email,
                publisher_website=publisher_website,
                privacy_policy_website=privacy_policy_website,
                license_agreement_website=license_agreement_website,
                stickers=tuple(stickers),
                source=PackSource.GENERATED,
            )
            await asyncio.to_thread(self._store.write_manifest, pack_id, manifest)

            if self._discard_promoted:
                for pending in promoted:
                    await self._discard_pending(pending)
            self._repository.invalidate(pack_id)

        logger.info("表情包已创建: pack=%s name=%s stickers=%s", pack_id, name, len(stickers))
        return manifest

    async def regenerate_tray(self, pack_id: str) -> bool:
        """用第一张贴纸重新生成托盘图标。"""
        async with self._pack_lock(pack_id):
            try:
                manifest = await asyncio.to_thread(self._repository.read_generated_pack, pack_id)
            except (MalformedManifestError, ValueError, OSError) as exc:
                logger.warning("无法读取表情包，跳过托盘图标重建: pack=%s error=%s", pack_id, exc)
                return False
            if manifest is None or not manifest.stickers:
                logger.info("表情包没有贴纸，无法重建托盘图标: pack=%s", pack_id)
                return False

            first = manifest.stickers[0]
            content = await asyncio.to_thread(self._store.read_asset, pack_id, first.image_file)
            if content is None:
                return False
            updated = await self._write_tray(pack_id, manifest.tray_image_file, content)
            if updated:
                self._repository.invalidate(pack_id)
            return updated

    async def repair_missing_trays(self) -> list[str]:
        repaired: list[str] = []
        for pack in await self._repository.list_packs():
            if pack.source != PackSource.GENERATED:
                continue
            if self._store.asset_size(pack.identifier, pack.tray_image_file) is not None:
                continue
            logger.info("托盘图标缺失，开始重建: pack=%s", pack.identifier)
            if await self.regenerate_tray(pack.identifier):
                repaired.append(pack.identifier)
        return repaired

    async def notify_host(self, pack_id: str) -> bool:
        """单向通知宿主重新读取表情包；失败只记录日志，不影响已完成的修改。"""
        if self._host_notifier is None:
            logger.debug("未配置宿主通知，跳过: pack=%s", pack_id)
            return False

        pack = await self._repository.find_pack(pack_id)
        if pack is None:
            logger.warning("表情包不在当前视图中，无法通知宿主: pack=%s", pack_id)
            return False

        try:
            await self._host_notifier.notify_pack_changed(pack)
        except Exception as exc:  # noqa: BLE001
            logger.warning("通知宿主失败: pack=%s error=%s", pack_id, exc)
            return False

        logger.info("已通知宿主表情包变更: pack=%s", pack_id)
        return True

    def schedule_host_notification(self, pack_id: str) -> "asyncio.Task[bool]":
        task = asyncio.create_task(self.notify_host(pack_id))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def _add_asset_locked(
        self,
        pack_id: str,
        pending: PendingAsset,
        regenerate_tray: bool,
    ) -> MutationResult:
        stage = PipelineStage.RESOLVING
        manifest = await self._resolve_manifest(pack_id)
        if manifest is None:
            return _failed(pack_id, stage, MutationErrorKind.PACK_NOT_FOUND)

        stage = PipelineStage.COPYING
        content = await asyncio.to_thread(self._pending_store.read_bytes, pending.image_file)
        if content is None:
            logger.error("暂存贴纸文件不存在: pack=%s file=%s", pack_id, pending.image_file)
            return _failed(pack_id, stage, MutationErrorKind.SOURCE_MISSING)

        file_name = generate_sticker_file_name()
        try:
            await asyncio.to_thread(self._store.write_asset, pack_id, file_name, content)
        except OSError:
            logger.exception("复制贴纸文件失败: pack=%s file=%s", pack_id, file_name)
            return _failed(pack_id, stage, MutationErrorKind.IO_FAILURE)

        stage = PipelineStage.MANIFEST_UPDATING
        sticker = pending.to_sticker(file_name, len(content))
        updated = manifest.with_stickers((sticker, *manifest.stickers))

        try:
            await asyncio.to_thread(self._store.write_manifest, pack_id, updated)
        except OSError:
            logger.exception(
                "写入表情包清单失败，贴纸文件保留待下次对账收养: pack=%s file=%s",
                pack_id,
                file_name,
            )
            return _failed(pack_id, stage, MutationErrorKind.PERSIST_FAILED)

        logger.info(
            "贴纸已加入表情包: pack=%s file=%s stickers=%s",
            pack_id,
            file_name,
            len(updated.stickers),
        )

        tray_updated = False
        try:
            if self._discard_promoted:
                await self._discard_pending(pending)
            if regenerate_tray:
                tray_updated = await self._write_tray(pack_id, updated.tray_image_file, content)
        finally:
            # 清单已落盘，缓存必须失效
            self._repository.invalidate(pack_id)

        return MutationResult(
            pack_id=pack_id,
            stage=PipelineStage.INVALIDATED,
            sticker=sticker,
            manifest=updated,
            tray_updated=tray_updated,
        )

    async def _resolve_manifest(self, pack_id: str) -> StickerPackManifest | None:
        """
        追加的基准是磁盘上的原始清单，而不是对账后的视图：
        文件缺失的条目保留在清单中，未登记的文件也不会被写进清单。
        刚创建、缓存尚未看到的表情包同样能解析到。
        """
        if await self._repository.find_pack(pack_id) is None:
            logger.debug("缓存视图中没有该表情包，直接读取磁盘: pack=%s", pack_id)

        try:
            manifest = await asyncio.to_thread(self._read_document_with_sizes, pack_id)
        except MalformedManifestError as exc:
            logger.warning("表情包清单无效，无法追加贴纸: pack=%s reason=%s", pack_id, exc.reason)
            return None
        except OSError:
            logger.exception("读取表情包清单失败: pack=%s", pack_id)
            return None

        if manifest is None:
            logger.warning("目标表情包不存在: pack=%s", pack_id)
        return manifest

    def _read_document_with_sizes(self, pack_id: str) -> StickerPackManifest | None:
        manifest = self._repository.read_pack_document(pack_id)
        if manifest is None:
            return None
        return manifest.with_stickers(
            [
                sticker.with_size(self._store.asset_size(pack_id, sticker.image_file) or 0)
                for sticker in manifest.stickers
            ]
        )

    def _is_writable_pack_id(self, pack_id: str) -> bool:
        return is_safe_name(pack_id) and self._repository.is_generated_pack_id(pack_id)

    async def _initial_tray(
        self, renderer: TrayRenderer, pack_id: str, content: bytes | None
    ) -> bytes:
        if content is not None:
            try:
                return await renderer.downscale(content)
            except UnsupportedMediaError as exc:
                logger.warning("首张贴纸无法生成托盘图标，改用占位图标: pack=%s error=%s", pack_id, exc)
        return await renderer.placeholder()

    async def _write_tray(self, pack_id: str, tray_file: str, content: bytes) -> bool:
        if self._tray_renderer is None:
            logger.warning("未配置托盘图标渲染器，跳过托盘图标更新: pack=%s", pack_id)
            return False
        try:
            tray = await self._tray_renderer.downscale(content)
            await asyncio.to_thread(self._store.write_asset, pack_id, tray_file, tray)
        except (UnsupportedMediaError, OSError, ValueError) as exc:
            logger.warning("更新托盘图标失败（贴纸已加入）: pack=%s error=%s", pack_id, exc)
            return False
        logger.info("托盘图标已更新: pack=%s", pack_id)
        return True

    async def _discard_pending(self, pending: PendingAsset) -> None:
        try:
            await asyncio.to_thread(self._pending_store.delete, pending.image_file)
        except OSError as exc:
            logger.warning("清理暂存贴纸失败: file=%s error=%s", pending.image_file, exc)

    @asynccontextmanager
    async def _pack_lock(self, pack_id: str) -> AsyncIterator[None]:
        """同一表情包串行执行；没有运行持有或等待时移除该锁。"""
        entry = self._pack_locks.get(pack_id)
        if entry is None:
            entry = self._pack_locks[pack_id] = _PackLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._pack_locks[pack_id]


def _failed(pack_id: str, stage: PipelineStage, error: MutationErrorKind) -> MutationResult:
    return MutationResult(pack_id=pack_id, stage=stage, error=error)
