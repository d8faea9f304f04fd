import asyncio
import logging
import tempfile
from pathlib import Path

from stickershelf.core.errors import UnsupportedMediaError
from stickershelf.utils.files import safe_unlink

logger = logging.getLogger(__name__)

# WhatsApp 风格的绿色底 + 白色描边
_PLACEHOLDER_COLOR = "0x25D366"
_PLACEHOLDER_BORDER = 4


class FfmpegTrayRenderer:
    """用 ffmpeg 生成固定边长的 WebP 托盘图标。"""

    def __init__(self, tray_size: int = 96) -> None:
        self._tray_size = tray_size

    async def downscale(self, content: bytes) -> bytes:
        with tempfile.NamedTemporaryFile(delete=False, suffix=".webp") as in_file:
            in_file.write(content)
            in_path = Path(in_file.name)

        with tempfile.NamedTemporaryFile(delete=False, suffix=".webp") as out_file:
            out_path = Path(out_file.name)

        try:
            size = self._tray_size
            await _run_ffmpeg(
                [
                    "-i",
                    str(in_path),
                    "-vf",
                    f"scale={size}:{size}:flags=lanczos,format=rgba",
                    "-frames:v",
                    "1",
                    "-c:v",
                    "libwebp",
                    "-quality",
                    "100",
                    str(out_path),
                ]
            )
            tray = out_path.read_bytes()
            logger.debug("托盘图标缩放完成: input=%s output=%s", len(content), len(tray))
            return tray
        finally:
            safe_unlink(in_path)
            safe_unlink(out_path)

    async def placeholder(self) -> bytes:
        with tempfile.NamedTemporaryFile(delete=False, suffix=".webp") as out_file:
            out_path = Path(out_file.name)

        size = self._tray_size
        inner = size - 2 * _PLACEHOLDER_BORDER
        try:
            await _run_ffmpeg(
                [
                    "-f",
                    "lavfi",
                    "-i",
                    f"color=c={_PLACEHOLDER_COLOR}:s={size}x{size}",
                    "-vf",
                    (
                        f"drawbox=x={_PLACEHOLDER_BORDER}:y={_PLACEHOLDER_BORDER}:"
                        f"w={inner}:h={inner}:color=white:t={_PLACEHOLDER_BORDER}"
                    ),
                    "-frames:v",
                    "1",
                    "-c:v",
                    "libwebp",
                    str(out_path),
                ]
            )
            return out_path.read_bytes()
        finally:
            safe_unlink(out_path)


async def _run_ffmpeg(args: list[str]) -> None:
    try:
        process = await asyncio.create_subprocess_exec(
            "ffmpeg",
            "-y",
            "-loglevel",
            "error",
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise UnsupportedMediaError("托盘图标渲染失败: 缺少命令 ffmpeg") from exc

    _, stderr = await process.communicate()
    if process.returncode != 0:
        error_text = stderr.decode("utf-8", errors="ignore").strip()
        raise UnsupportedMediaError(f"ffmpeg 转换失败: {error_text}")
