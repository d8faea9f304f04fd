import json
from collections.abc import Callable
from pathlib import Path

import pytest

from stickershelf.core.errors import UnsupportedMediaError


class FakeTrayRenderer:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.downscaled: list[bytes] = []

    async def downscale(self, content: bytes) -> bytes:
        if self.fail:
            raise UnsupportedMediaError("ffmpeg 转换失败: boom")
        self.downscaled.append(content)
        return b"tray:" + content[:8]

    async def placeholder(self) -> bytes:
        return b"placeholder-tray"


@pytest.fixture
def packs_root(tmp_path: Path) -> Path:
    root = tmp_path / "packs"
    root.mkdir()
    return root


@pytest.fixture
def make_pack(packs_root: Path) -> Callable[..., Path]:
    """在 packs_root 下写入一个动态表情包目录：stickers 为 (文件名, 字节数) 列表。"""

    def _make_pack(
        pack_id: str,
        stickers: list[tuple[str, int]],
        *,
        unlisted: list[tuple[str, int]] | None = None,
        missing: list[str] | None = None,
        tray: bool = True,
        extra: dict | None = None,
    ) -> Path:
        directory = packs_root / pack_id
        directory.mkdir(parents=True, exist_ok=True)
        entries = []
        for file_name, size in stickers:
            (directory / file_name).write_bytes(b"s" * size)
            entries.append({"image_file": file_name, "emojis": ["😀"], "accessibility_text": file_name})
        for file_name in missing or []:
            entries.append({"image_file": file_name, "emojis": ["😢"]})
        for file_name, size in unlisted or []:
            (directory / file_name).write_bytes(b"u" * size)
        if tray:
            (directory / "tray_icon.webp").write_bytes(b"tray")
        document = {
            "identifier": pack_id,
            "name": f"Pack {pack_id}",
            "publisher": "tester",
            "tray_image_file": "tray_icon.webp",
            "stickers": entries,
            **(extra or {}),
        }
        (directory / "pack_info.json").write_text(
            json.dumps(document, ensure_ascii=False), encoding="utf-8"
        )
        return directory

    return _make_pack


@pytest.fixture
def fake_tray_renderer() -> FakeTrayRenderer:
    return FakeTrayRenderer()


@pytest.fixture
def failing_tray_renderer() -> FakeTrayRenderer:
    return FakeTrayRenderer(fail=True)
