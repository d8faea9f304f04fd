from typing import Protocol

from stickershelf.core.models import StickerPackManifest


class TrayRenderer(Protocol):
    async def downscale(self, content: bytes) -> bytes:
        """将贴纸缩放为托盘图标尺寸。"""

    async def placeholder(self) -> bytes:
        """生成新表情包使用的占位托盘图标。"""


class HostNotifier(Protocol):
    async def notify_pack_changed(self, manifest: StickerPackManifest) -> None:
        """通知宿主重新读取该表情包。"""
