"""pack_info.json 文档与内存模型之间的转换。"""

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from stickershelf.core.errors import MalformedManifestError
from stickershelf.core.models import (
    PLACEHOLDER_EMOJI,
    PackSource,
    StickerAsset,
    StickerPackManifest,
)
from stickershelf.utils.files import is_safe_name

PACK_INFO_FILE_NAME = "pack_info.json"


class StickerEntryDocument(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    image_file: str = Field(min_length=1)
    emojis: list[str] = Field(default_factory=lambda: [PLACEHOLDER_EMOJI])
    accessibility_text: str = ""

    @field_validator("emojis")
    @classmethod
    def _fill_empty_emojis(cls, value: list[str]) -> list[str]:
        return value or [PLACEHOLDER_EMOJI]

    @field_validator("accessibility_text", mode="before")
    @classmethod
    def _null_text_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class PackInfoDocument(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    identifier: str = Field(min_length=1)
    name: str
    publisher: str
    tray_image_file: str = Field(min_length=1)
    publisher_email: str = ""
    publisher_website: str = ""
    privacy_policy_website: str = ""
    license_agreement_website: str = ""
    android_play_store_link: str = ""
    ios_app_store_link: str = ""
    image_data_version: str = "1"
    avoid_cache: bool = False
    animated_sticker_pack: bool = False
    stickers: list[StickerEntryDocument] = Field(default_factory=list)

    @field_validator("tray_image_file")
    @classmethod
    def _tray_in_pack_dir(cls, value: str) -> str:
        if not is_safe_name(value):
            raise ValueError("托盘图标必须是表情包目录下的文件名")
        return value


def parse_pack_info(
    data: Any,
    location: str,
    source: PackSource = PackSource.GENERATED,
) -> StickerPackManifest:
    """
    将已解码的 JSON 对象转换为表情包清单。
    - 缺少必填字段（identifier/name/publisher/tray_image_file）时整个表情包被拒绝
    - 可选字段缺失时使用默认值，未知字段忽略
    - 贴纸大小此时为 0，由调用方根据实际文件回填
    """
    try:
        document = PackInfoDocument.model_validate(data)
    except ValidationError as exc:
        raise MalformedManifestError(location, _summarize_validation_error(exc)) from exc

    stickers = tuple(
        StickerAsset(
            image_file=entry.image_file,
            emojis=tuple(entry.emojis),
            accessibility_text=entry.accessibility_text,
        )
        for entry in document.stickers
    )
    return StickerPackManifest(
        identifier=document.identifier,
        name=document.name,
        publisher=document.publisher,
        tray_image_file=document.tray_image_file,
        publisher_email=document.publisher_email,
        publisher_website=document.publisher_website,
        privacy_policy_website=document.privacy_policy_website,
        license_agreement_website=document.license_agreement_website,
        android_play_store_link=document.android_play_store_link,
        ios_app_store_link=document.ios_app_store_link,
        image_data_version=document.image_data_version,
        avoid_cache=document.avoid_cache,
        animated_sticker_pack=document.animated_sticker_pack,
        stickers=stickers,
        source=source,
    )


def loads_pack_info(
    text: str,
    location: str,
    source: PackSource = PackSource.GENERATED,
) -> StickerPackManifest:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedManifestError(location, f"JSON 格式错误: {exc.msg}") from exc
    return parse_pack_info(data, location, source)


def dump_pack_info(manifest: StickerPackManifest) -> dict[str, Any]:
    """序列化为 pack_info.json 文档。total_size 是派生值，不写入。"""
    document: dict[str, Any] = {
        "identifier": manifest.identifier,
        "name": manifest.name,
        "publisher": manifest.publisher,
        "tray_image_file": manifest.tray_image_file,
        "publisher_email": manifest.publisher_email,
        "publisher_website": manifest.publisher_website,
        "privacy_policy_website": manifest.privacy_policy_website,
        "license_agreement_website": manifest.license_agreement_website,
        "image_data_version": manifest.image_data_version,
        "avoid_cache": manifest.avoid_cache,
        "animated_sticker_pack": manifest.animated_sticker_pack,
        "stickers": [
            {
                "image_file": sticker.image_file,
                "emojis": list(sticker.emojis),
                "accessibility_text": sticker.accessibility_text,
            }
            for sticker in manifest.stickers
        ],
    }
    if manifest.android_play_store_link:
        document["android_play_store_link"] = manifest.android_play_store_link
    if manifest.ios_app_store_link:
        document["ios_app_store_link"] = manifest.ios_app_store_link
    return document


def dumps_pack_info(manifest: StickerPackManifest) -> str:
    return json.dumps(dump_pack_info(manifest), ensure_ascii=False, indent=2)


def _summarize_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(item) for item in error.get("loc", ())) or "<root>"
        parts.append(f"{loc}: {error.get('msg', 'invalid')}")
    return "; ".join(parts)
