import asyncio

import pytest

from stickershelf.adapters import ffmpeg_tray
from stickershelf.adapters.ffmpeg_tray import FfmpegTrayRenderer
from stickershelf.core.errors import UnsupportedMediaError


def test_missing_ffmpeg_is_reported(monkeypatch) -> None:
    async def _missing(*args, **kwargs):
        raise FileNotFoundError("ffmpeg")

    monkeypatch.setattr(ffmpeg_tray.asyncio, "create_subprocess_exec", _missing)

    with pytest.raises(UnsupportedMediaError):
        asyncio.run(FfmpegTrayRenderer().downscale(b"not an image"))


def test_ffmpeg_failure_is_reported(monkeypatch) -> None:
    captured: list[tuple] = []

    class _Process:
        returncode = 1

        async def communicate(self):
            return b"", b"Invalid data found when processing input"

    async def _fake_exec(*args, **kwargs):
        captured.append(args)
        return _Process()

    monkeypatch.setattr(ffmpeg_tray.asyncio, "create_subprocess_exec", _fake_exec)

    with pytest.raises(UnsupportedMediaError) as exc_info:
        asyncio.run(FfmpegTrayRenderer(tray_size=64).placeholder())

    assert "Invalid data" in str(exc_info.value)
    assert captured[0][0] == "ffmpeg"
    assert "color=c=0x25D366:s=64x64" in captured[0]
