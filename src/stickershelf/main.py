import asyncio
import logging

import uvicorn

from stickershelf.adapters.ffmpeg_tray import FfmpegTrayRenderer
from stickershelf.adapters.host_client import HostClient
from stickershelf.adapters.http_provider import build_provider_app
from stickershelf.config import Settings
from stickershelf.services.asset_store import AssetStore
from stickershelf.services.bundled import BundledPackSource
from stickershelf.services.mutation import MutationPipeline
from stickershelf.services.notifier import ChangeNotifier
from stickershelf.services.pending import PendingAssetStore
from stickershelf.services.provider import StickerQueryProtocol
from stickershelf.services.repository import PackRepository
from stickershelf.utils.logging import setup_logging


async def async_main() -> None:
    settings = Settings()
    setup_logging(settings.log_level)

    logger = logging.getLogger(__name__)

    notifier = ChangeNotifier()
    repository = PackRepository(
        store=AssetStore(settings.data_dir),
        bundled=BundledPackSource(settings.bundled_dir),
        generated_prefixes=settings.generated_pack_prefixes,
        notifier=notifier,
    )
    protocol = StickerQueryProtocol(
        repository=repository,
        authority=settings.provider_authority,
        notifier=notifier,
    )

    host_client: HostClient | None = None
    if settings.host_enabled():
        host_client = HostClient(
            base_url=settings.host_base_url,
            source_identity=settings.provider_authority,
            timeout=settings.host_timeout_seconds,
        )

    pipeline = MutationPipeline(
        repository=repository,
        pending_store=PendingAssetStore(settings.pending_dir),
        tray_renderer=FfmpegTrayRenderer(tray_size=settings.tray_icon_size),
        host_notifier=host_client,
    )

    repaired = await pipeline.repair_missing_trays()
    if repaired:
        logger.info("已重建缺失的托盘图标: %s", ", ".join(repaired))

    packs = await repository.list_packs()
    server = uvicorn.Server(
        uvicorn.Config(
            build_provider_app(protocol, host_client),
            host=settings.provider_host,
            port=settings.provider_port,
            log_level=settings.log_level.lower(),
        )
    )
    if host_client:
        logger.info("stickershelf 启动成功，表情包数量=%s，宿主通知已启用", len(packs))
    else:
        logger.info("stickershelf 启动成功，表情包数量=%s（未配置宿主）", len(packs))

    try:
        await server.serve()
    finally:
        protocol.close()


def main() -> None:
    try:
        asyncio.run(async_main())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("收到中断信号，stickershelf 正在退出")


if __name__ == "__main__":
    main()
