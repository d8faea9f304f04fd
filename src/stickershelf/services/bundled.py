import json
import logging
from dataclasses import replace
from pathlib import Path

from stickershelf.core.errors import MalformedManifestError
from stickershelf.core.models import (
    BundledDiscovery,
    Discovery,
    InvalidDiscovery,
    PackSource,
    StickerPackManifest,
)
from stickershelf.services.manifest import parse_pack_info
from stickershelf.utils.files import is_safe_name

logger = logging.getLogger(__name__)

CONTENTS_FILE_NAME = "contents.json"


class BundledPackSource:
    """随应用发布的只读表情包：一个 contents.json 加每个表情包一个素材目录。"""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def discover(self) -> list[Discovery]:
        contents_path = self._root / CONTENTS_FILE_NAME
        try:
            text = contents_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("未找到内置表情包清单: %s", contents_path)
            return []

        try:
            contents = json.loads(text)
        except json.JSONDecodeError as exc:
            return [InvalidDiscovery(str(contents_path), f"JSON 格式错误: {exc.msg}")]

        if not isinstance(contents, dict) or not isinstance(
            contents.get("sticker_packs", []), list
        ):
            return [InvalidDiscovery(str(contents_path), "sticker_packs 必须是数组")]

        android_link = str(contents.get("android_play_store_link") or "")
        ios_link = str(contents.get("ios_app_store_link") or "")

        discoveries: list[Discovery] = []
        for index, entry in enumerate(contents.get("sticker_packs", [])):
            location = f"{contents_path}#sticker_packs[{index}]"
            try:
                manifest = parse_pack_info(entry, location, PackSource.BUNDLED)
            except MalformedManifestError as exc:
                discoveries.append(InvalidDiscovery(exc.location, exc.reason))
                continue

            if not is_safe_name(manifest.identifier):
                discoveries.append(InvalidDiscovery(location, "identifier 不是合法目录名"))
                continue

            manifest = replace(
                manifest,
                android_play_store_link=manifest.android_play_store_link or android_link,
                ios_app_store_link=manifest.ios_app_store_link or ios_link,
            )
            discoveries.append(BundledDiscovery(self._attach_sizes(manifest)))

        logger.debug("内置表情包扫描完成: count=%s", len(discoveries))
        return discoveries

    def read_asset(self, pack_id: str, file_name: str) -> bytes | None:
        if not is_safe_name(pack_id) or not is_safe_name(file_name):
            return None
        try:
            return (self._root / pack_id / file_name).read_bytes()
        except (FileNotFoundError, IsADirectoryError):
            return None

    def _attach_sizes(self, manifest: StickerPackManifest) -> StickerPackManifest:
        directory = self._root / manifest.identifier
        stickers = []
        seen: set[str] = set()
        for sticker in manifest.stickers:
            if sticker.image_file in seen or not is_safe_name(sticker.image_file):
                continue
            path = directory / sticker.image_file
            if not path.is_file():
                logger.debug(
                    "内置贴纸文件缺失，已从视图排除: pack=%s file=%s",
                    manifest.identifier,
                    sticker.image_file,
                )
                continue
            seen.add(sticker.image_file)
            stickers.append(sticker.with_size(path.stat().st_size))
        return manifest.with_stickers(stickers)
