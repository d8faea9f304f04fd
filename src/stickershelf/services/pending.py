import json
import logging
import threading
import time
import uuid
from pathlib import Path
from typing import get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from stickershelf.core.models import MAX_EMOJIS_PER_STICKER, PendingAsset, SourceKind
from stickershelf.services.asset_store import STICKER_FILE_SUFFIX
from stickershelf.utils.files import atomic_write_bytes, is_safe_name, safe_unlink

logger = logging.getLogger(__name__)

PENDING_INDEX_FILE_NAME = "custom_stickers_info.json"


class PendingEntryDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    image_file: str = Field(min_length=1)
    emojis: list[str] = Field(default_factory=list)
    accessibility_text: str = ""
    created_at: int = 0
    size: int = 0
    source_kind: SourceKind = "image"

    def to_asset(self) -> PendingAsset:
        return PendingAsset(
            image_file=self.image_file,
            emojis=tuple(self.emojis),
            accessibility_text=self.accessibility_text,
            created_at=self.created_at,
            size=self.size,
            source_kind=self.source_kind,
        )

    @classmethod
    def from_asset(cls, asset: PendingAsset) -> "PendingEntryDocument":
        return cls(
            image_file=asset.image_file,
            emojis=list(asset.emojis),
            accessibility_text=asset.accessibility_text,
            created_at=asset.created_at,
            size=asset.size,
            source_kind=asset.source_kind,
        )


_INDEX_ADAPTER = TypeAdapter(list[PendingEntryDocument])


class PendingAssetStore:
    """编辑器产出、尚未加入任何表情包的贴纸暂存区。"""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._index_path = self._root / PENDING_INDEX_FILE_NAME
        self._lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    def save(
        self,
        content: bytes,
        emojis: list[str] | tuple[str, ...],
        accessibility_text: str = "",
        source_kind: SourceKind = "image",
    ) -> PendingAsset:
        tags = tuple(emoji for emoji in emojis if emoji)
        if not 1 <= len(tags) <= MAX_EMOJIS_PER_STICKER:
            raise ValueError(f"每个贴纸需要 1-{MAX_EMOJIS_PER_STICKER} 个 emoji，实际 {len(tags)} 个")
        if source_kind not in get_args(SourceKind):
            raise ValueError(f"不支持的来源类型: {source_kind}")

        file_name = f"{source_kind}_{uuid.uuid4().hex[:8]}{STICKER_FILE_SUFFIX}"
        asset = PendingAsset(
            image_file=file_name,
            emojis=tags,
            accessibility_text=accessibility_text,
            created_at=int(time.time() * 1000),
            size=len(content),
            source_kind=source_kind,
        )

        with self._lock:
            atomic_write_bytes(self._root / file_name, content)
            entries = self._load_entries()
            entries.append(asset)
            self._save_entries(entries)

        logger.info(
            "暂存贴纸已保存: file=%s size=%s kind=%s",
            file_name,
            asset.size,
            source_kind,
        )
        return asset

    def list_pending(self) -> list[PendingAsset]:
        """文件已经不存在的条目会被跳过。"""
        with self._lock:
            entries = self._load_entries()
        return [entry for entry in entries if (self._root / entry.image_file).is_file()]

    def get(self, image_file: str) -> PendingAsset | None:
        for entry in self.list_pending():
            if entry.image_file == image_file:
                return entry
        return None

    def read_bytes(self, image_file: str) -> bytes | None:
        if not is_safe_name(image_file):
            return None
        try:
            return (self._root / image_file).read_bytes()
        except (FileNotFoundError, IsADirectoryError):
            return None

    def delete(self, image_file: str) -> bool:
        if not is_safe_name(image_file):
            return False
        with self._lock:
            entries = self._load_entries()
            remaining = [entry for entry in entries if entry.image_file != image_file]
            existed = (self._root / image_file).exists() or len(remaining) != len(entries)
            safe_unlink(self._root / image_file)
            if len(remaining) != len(entries):
                self._save_entries(remaining)

        if existed:
            logger.info("暂存贴纸已删除: file=%s", image_file)
        return existed

    def _load_entries(self) -> list[PendingAsset]:
        try:
            raw = json.loads(self._index_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except json.JSONDecodeError:
            logger.warning("暂存区索引文件格式错误，按空索引处理: %s", self._index_path)
            return []
        if not isinstance(raw, list):
            logger.warning("暂存区索引文件不是数组，按空索引处理: %s", self._index_path)
            return []

        entries: list[PendingAsset] = []
        for item in raw:
            try:
                entries.append(PendingEntryDocument.model_validate(item).to_asset())
            except ValidationError:
                logger.warning("跳过无法解析的暂存区条目: %s", item)
        return entries

    def _save_entries(self, entries: list[PendingAsset]) -> None:
        documents = [PendingEntryDocument.from_asset(entry) for entry in entries]
        atomic_write_bytes(self._index_path, _INDEX_ADAPTER.dump_json(documents, indent=2))
