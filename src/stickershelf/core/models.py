from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Literal

SourceKind = Literal["image", "video"]

PLACEHOLDER_EMOJI = "🎨"
MAX_EMOJIS_PER_STICKER = 3


class PackSource(str, Enum):
    BUNDLED = "bundled"
    GENERATED = "generated"


@dataclass(frozen=True, slots=True)
class StickerAsset:
    image_file: str
    emojis: tuple[str, ...]
    accessibility_text: str = ""
    size: int = 0

    def with_size(self, size: int) -> "StickerAsset":
        return replace(self, size=size)


@dataclass(frozen=True, slots=True)
class StickerPackManifest:
    """单个表情包的元数据与有序贴纸列表。total_size 始终由贴纸列表推导，不落盘。"""

    identifier: str
    name: str
    publisher: str
    tray_image_file: str
    publisher_email: str = ""
    publisher_website: str = ""
    privacy_policy_website: str = ""
    license_agreement_website: str = ""
    android_play_store_link: str = ""
    ios_app_store_link: str = ""
    image_data_version: str = "1"
    avoid_cache: bool = False
    animated_sticker_pack: bool = False
    stickers: tuple[StickerAsset, ...] = ()
    source: PackSource = field(default=PackSource.GENERATED, compare=False)

    @property
    def total_size(self) -> int:
        return sum(sticker.size for sticker in self.stickers)

    def with_stickers(self, stickers: tuple[StickerAsset, ...] | list[StickerAsset]) -> "StickerPackManifest":
        return replace(self, stickers=tuple(stickers))

    def find_sticker(self, image_file: str) -> StickerAsset | None:
        for sticker in self.stickers:
            if sticker.image_file == image_file:
                return sticker
        return None


@dataclass(frozen=True, slots=True)
class PendingAsset:
    image_file: str
    emojis: tuple[str, ...]
    accessibility_text: str
    created_at: int
    size: int
    source_kind: SourceKind = "image"

    def to_sticker(self, image_file: str, size: int) -> StickerAsset:
        return StickerAsset(
            image_file=image_file,
            emojis=self.emojis,
            accessibility_text=self.accessibility_text,
            size=size,
        )


@dataclass(frozen=True, slots=True)
class BundledDiscovery:
    manifest: StickerPackManifest


@dataclass(frozen=True, slots=True)
class GeneratedDiscovery:
    manifest: StickerPackManifest
    tray_missing: bool = False


@dataclass(frozen=True, slots=True)
class InvalidDiscovery:
    location: str
    reason: str


Discovery = BundledDiscovery | GeneratedDiscovery | InvalidDiscovery


@dataclass(frozen=True, slots=True)
class HostPackRecord:
    """发给宿主的单向通知载荷。"""

    pack_id: str
    source_identity: str
    pack_name: str
    publisher: str

    def to_payload(self) -> dict[str, str]:
        return {
            "pack_id": self.pack_id,
            "source_identity": self.source_identity,
            "pack_name": self.pack_name,
            "publisher": self.publisher,
        }
