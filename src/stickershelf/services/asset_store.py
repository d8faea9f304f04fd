import logging
import time
import uuid
from pathlib import Path

from stickershelf.core.models import PackSource, StickerPackManifest
from stickershelf.services.manifest import PACK_INFO_FILE_NAME, dumps_pack_info, loads_pack_info
from stickershelf.utils.files import atomic_write_bytes, atomic_write_text, is_safe_name

logger = logging.getLogger(__name__)

STICKER_FILE_SUFFIX = ".webp"


class AssetStore:
    """每个表情包一个目录（目录名即 identifier），只做文件读写，不含业务逻辑。"""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def pack_dir(self, pack_id: str) -> Path:
        if not is_safe_name(pack_id):
            raise ValueError(f"非法的表情包标识: {pack_id!r}")
        return self._root / pack_id

    def asset_path(self, pack_id: str, file_name: str) -> Path:
        if not is_safe_name(file_name):
            raise ValueError(f"非法的贴纸文件名: {file_name!r}")
        return self.pack_dir(pack_id) / file_name

    def read_manifest(self, pack_id: str) -> StickerPackManifest | None:
        """读取 pack_info.json；不存在返回 None，格式错误抛出 MalformedManifestError。"""
        path = self.pack_dir(pack_id) / PACK_INFO_FILE_NAME
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("表情包描述文件不存在: %s", path)
            return None
        return loads_pack_info(text, str(path), PackSource.GENERATED)

    def write_manifest(self, pack_id: str, manifest: StickerPackManifest) -> None:
        path = self.pack_dir(pack_id) / PACK_INFO_FILE_NAME
        atomic_write_text(path, dumps_pack_info(manifest))
        logger.debug(
            "表情包描述文件已写入: pack=%s stickers=%s",
            pack_id,
            len(manifest.stickers),
        )

    def read_asset(self, pack_id: str, file_name: str) -> bytes | None:
        try:
            return self.asset_path(pack_id, file_name).read_bytes()
        except (FileNotFoundError, IsADirectoryError):
            return None

    def write_asset(self, pack_id: str, file_name: str, content: bytes) -> None:
        atomic_write_bytes(self.asset_path(pack_id, file_name), content)
        logger.debug("贴纸文件已写入: pack=%s file=%s size=%s", pack_id, file_name, len(content))

    def asset_size(self, pack_id: str, file_name: str) -> int | None:
        try:
            path = self.asset_path(pack_id, file_name)
        except ValueError:
            return None
        if not path.is_file():
            return None
        return path.stat().st_size

    def has_manifest(self, pack_id: str) -> bool:
        return (self.pack_dir(pack_id) / PACK_INFO_FILE_NAME).is_file()

    def list_pack_directories(self) -> set[str]:
        if not self._root.is_dir():
            return set()
        return {entry.name for entry in self._root.iterdir() if entry.is_dir()}

    def list_asset_files(self, pack_id: str) -> list[str]:
        """按文件名排序返回目录中的贴纸文件（不含描述文件与临时文件）。"""
        directory = self.pack_dir(pack_id)
        if not directory.is_dir():
            return []
        return sorted(
            entry.name
            for entry in directory.iterdir()
            if entry.is_file()
            and entry.suffix == STICKER_FILE_SUFFIX
            and not entry.name.startswith(".")
        )


def generate_sticker_file_name(prefix: str = "sticker") -> str:
    """毫秒时间戳 + 随机串，同一毫秒内的并发写入也不会撞名。"""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}{STICKER_FILE_SUFFIX}"
