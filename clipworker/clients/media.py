"""
Media engine wrapper around yt-dlp, ffmpeg and ffprobe.

Commands run through ``asyncio.to_thread(subprocess.run, ...)`` so a long
encode never blocks the event loop (and with it the heartbeat task).
Every failure surfaces as ProcessingError.
"""

import asyncio
import logging
import subprocess
from pathlib import Path

from clipworker.exceptions import ProcessingError
from clipworker.types.payloads import EditSettings

logger = logging.getLogger(__name__)

FRAME_WIDTH = 1080
FRAME_HEIGHT = 1920

ENCODE_ARGS = ["-c:v", "libx264", "-preset", "fast", "-crf", "23"]

# (font size, box padding) per caption size
CAPTION_SIZES = {
    "small": (36, 20),
    "medium": (46, 30),
    "large": (56, 40),
}

WATERMARK_POSITIONS = {
    "top-left": ("10", "10"),
    "top-right": ("w-text_w-10", "10"),
    "bottom-left": ("10", "h-text_h-10"),
    "bottom-right": ("w-text_w-10", "h-text_h-10"),
}


def sanitize_text(text: str, max_length: int = 50) -> str:
    """Escape characters with special meaning in an ffmpeg drawtext value."""
    if not text:
        return ""
    escaped = (
        text.replace("\\", "\\\\")
        .replace("'", "\\'")
        .replace(":", "\\:")
        .replace("[", "\\[")
        .replace("]", "\\]")
        .replace(";", "\\;")
        .replace("\n", "")
        .replace("\r", "")
    )
    return escaped[:max_length]


def wrap_text(text: str, width: int = 28, max_lines: int = 3) -> str:
    """Greedy word wrap, truncating over-long words and keeping at most ``max_lines``."""
    if not text:
        return ""
    lines: list[str] = []
    current = ""
    for word in text.split():
        candidate = f"{current} {word}".strip()
        if len(candidate) <= width:
            current = candidate
            continue
        if current:
            lines.append(current)
        current = word if len(word) <= width else word[: width - 3] + "..."
    if current:
        lines.append(current)
    return "\n".join(lines[:max_lines])


def escape_filter_path(path: Path | str) -> str:
    """Escape a file path for use inside an ffmpeg filter graph."""
    return str(path).replace("\\", "/").replace("'", "\\'").replace(":", "\\:")


def build_edit_filters(settings: EditSettings, font_path: str) -> str:
    """
    Build the ffmpeg ``-vf`` chain for a clip edit.

    ``contain`` scales into the frame minus paddings and pads with the
    padding colour; ``cover`` scales up and crops.
    """
    filters: list[str] = []

    if settings.fit_mode == "contain":
        inner_height = FRAME_HEIGHT - settings.padding_top - settings.padding_bottom
        color = settings.padding_color.replace("#", "0x")
        filters.append(f"scale={FRAME_WIDTH}:{inner_height}:force_original_aspect_ratio=decrease")
        filters.append(f"pad={FRAME_WIDTH}:{FRAME_HEIGHT}:(ow-iw)/2:{settings.padding_top}:{color}")
    else:
        filters.append(f"scale={FRAME_WIDTH}:{FRAME_HEIGHT}:force_original_aspect_ratio=increase")
        filters.append(f"crop={FRAME_WIDTH}:{FRAME_HEIGHT}")

    watermark = sanitize_text(settings.watermark_text)
    if watermark:
        x, y = WATERMARK_POSITIONS[settings.watermark_position]
        filters.append(
            f"drawtext=text='{watermark}':fontfile={escape_filter_path(font_path)}"
            f":fontcolor=white@0.7:fontsize=32:x={x}:y={y}"
        )

    caption = settings.caption_box
    caption_text = sanitize_text(caption.text, 200) if caption else ""
    if caption and caption_text:
        font_size, padding = CAPTION_SIZES[caption.size]
        box_height = font_size + 2 * padding
        if caption.position == "top":
            text_y = str(150 + padding)
        elif caption.position == "center":
            text_y = f"(h-{box_height})/2+{padding}"
        else:
            text_y = f"h-{box_height}-200+{padding}"
        filters.append(
            f"drawtext=text='{caption_text}':fontfile={escape_filter_path(font_path)}"
            f":fontcolor=black:fontsize={font_size}:x=(w-text_w)/2:y={text_y}"
            f":box=1:boxcolor=white@0.95:boxborderw={padding}"
        )

    return ",".join(filters)


class MediaEngine:
    """
    Thin async facade over the media command-line tools.

    Args:
        font_path: Font file used for drawtext overlays; overlays are skipped
            when the file is absent.
        download_timeout: Timeout for network downloads, in seconds.
        encode_timeout: Timeout for encodes, in seconds.
    """

    def __init__(
        self,
        font_path: str,
        download_timeout: float = 120.0,
        encode_timeout: float = 180.0,
    ):
        self.font_path = font_path
        self.download_timeout = download_timeout
        self.encode_timeout = encode_timeout

    @property
    def has_font(self) -> bool:
        return Path(self.font_path).exists()

    async def run(self, command: list[str], timeout: float, step: str) -> subprocess.CompletedProcess[str]:
        """
        Run one command without blocking the event loop.

        Raises:
            ProcessingError: On missing binary, timeout or non-zero exit.
        """
        logger.debug("Running media command", extra={"step": step, "binary": command[0]})
        try:
            result = await asyncio.to_thread(
                subprocess.run,
                command,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout,
            )
        except FileNotFoundError as e:
            raise ProcessingError(f"{command[0]} is not installed", step=step) from e
        except subprocess.TimeoutExpired as e:
            raise ProcessingError(f"{step} timed out after {timeout:.0f}s", step=step) from e

        if result.returncode != 0:
            stderr_tail = result.stderr.strip()[-500:]
            raise ProcessingError(
                f"{step} failed with exit code {result.returncode}: {stderr_tail}",
                step=step,
            )
        return result

    async def download(self, url: str, output: Path) -> None:
        await self.run(
            ["yt-dlp", "-f", "best[height<=720]", "-o", str(output), url],
            timeout=self.download_timeout,
            step="download",
        )

    async def placeholder(self, output: Path, label: str = "ClipFlow") -> None:
        """Create a short solid-colour vertical clip used when a source cannot be fetched."""
        source = f"color=c=purple:s={FRAME_WIDTH}x{FRAME_HEIGHT}:d=5"
        command = ["ffmpeg", "-f", "lavfi", "-i", source]
        if self.has_font:
            command += [
                "-vf",
                f"drawtext=text='{sanitize_text(label)}':fontfile={escape_filter_path(self.font_path)}"
                ":fontcolor=white:fontsize=64:x=(w-text_w)/2:y=(h-text_h)/2",
            ]
        command += ["-c:v", "libx264", "-t", "5", "-y", str(output)]
        await self.run(command, timeout=30, step="placeholder")

    async def to_vertical(self, source: Path, output: Path) -> None:
        vf = (
            f"scale={FRAME_WIDTH}:{FRAME_HEIGHT}:force_original_aspect_ratio=decrease,"
            f"pad={FRAME_WIDTH}:{FRAME_HEIGHT}:(ow-iw)/2:(oh-ih)/2:black"
        )
        await self.run(
            ["ffmpeg", "-i", str(source), "-vf", vf, *ENCODE_ARGS, "-c:a", "aac", "-y", str(output)],
            timeout=self.encode_timeout,
            step="convert",
        )

    async def apply_edit(self, source: Path, output: Path, settings: EditSettings) -> None:
        vf = build_edit_filters(settings, self.font_path)
        await self.run(
            ["ffmpeg", "-i", str(source), "-vf", vf, *ENCODE_ARGS, "-c:a", "aac", "-y", str(output)],
            timeout=self.encode_timeout,
            step="edit",
        )

    async def thumbnail(self, source: Path, output: Path) -> None:
        """Grab a frame at 1s, falling back to the first frame for very short clips."""
        for offset in ("00:00:01", "00:00:00"):
            try:
                await self.run(
                    ["ffmpeg", "-i", str(source), "-ss", offset, "-vframes", "1", "-q:v", "2", "-y", str(output)],
                    timeout=30,
                    step="thumbnail",
                )
                return
            except ProcessingError:
                if offset == "00:00:00":
                    raise

    async def probe_duration(self, source: Path) -> float | None:
        """Return the media duration in seconds, or None if it cannot be probed."""
        try:
            result = await self.run(
                [
                    "ffprobe", "-v", "error", "-show_entries", "format=duration",
                    "-of", "default=noprint_wrappers=1:nokey=1", str(source),
                ],
                timeout=10,
                step="probe",
            )
            return float(result.stdout.strip())
        except (ProcessingError, ValueError):
            logger.info("Could not probe media duration", extra={"path": str(source)})
            return None

    async def slice_audio(self, source: Path, output: Path, start: float, duration: float) -> None:
        await self.run(
            ["ffmpeg", "-i", str(source), "-ss", f"{start:.3f}", "-t", f"{duration:.3f}", "-c:a", "copy", "-y", str(output)],
            timeout=30,
            step="slice_audio",
        )

    async def image_clip(self, image: Path, output: Path, duration: float, text_file: Path | None = None) -> None:
        """Render one still image as a vertical clip, optionally with a caption from a text file."""
        vf = (
            f"scale={FRAME_WIDTH}:{FRAME_HEIGHT}:force_original_aspect_ratio=increase,"
            f"crop={FRAME_WIDTH}:{FRAME_HEIGHT},setsar=1"
        )
        if text_file is not None and self.has_font:
            vf += (
                f",drawtext=textfile='{escape_filter_path(text_file)}'"
                f":fontfile='{escape_filter_path(self.font_path)}':fontcolor=white:fontsize=32"
                ":x=(w-text_w)/2:y=h-th-120:box=1:boxcolor=black@0.6:boxborderw=12"
                ":line_spacing=8:expansion=none"
            )
        await self.run(
            [
                "ffmpeg", "-loop", "1", "-i", str(image), "-t", f"{duration:.3f}", "-vf", vf,
                *ENCODE_ARGS, "-pix_fmt", "yuv420p", "-r", "30", "-an", "-y", str(output),
            ],
            timeout=60,
            step="image_clip",
        )

    async def concat(self, clips: list[Path], output: Path, list_file: Path) -> None:
        list_file.write_text("\n".join(f"file '{clip}'" for clip in clips))
        await self.run(
            [
                "ffmpeg", "-f", "concat", "-safe", "0", "-i", str(list_file),
                *ENCODE_ARGS, "-pix_fmt", "yuv420p", "-r", "30", "-y", str(output),
            ],
            timeout=self.encode_timeout,
            step="concat",
        )

    async def mux_audio(self, video: Path, audio: Path, output: Path) -> None:
        await self.run(
            [
                "ffmpeg", "-i", str(video), "-i", str(audio), *ENCODE_ARGS, "-c:a", "aac",
                "-map", "0:v:0", "-map", "1:a:0", "-shortest", "-y", str(output),
            ],
            timeout=self.encode_timeout,
            step="mux",
        )

    async def solid_clip(self, audio: Path, output: Path, duration: float, text: str = "") -> None:
        """Dark solid-colour clip under a voiceover, used when no images were found."""
        command = [
            "ffmpeg", "-f", "lavfi", "-i", f"color=c=0x1a1a2e:s={FRAME_WIDTH}x{FRAME_HEIGHT}:d={duration:.3f}",
            "-i", str(audio),
        ]
        label = sanitize_text(text, 60)
        if label and self.has_font:
            command += [
                "-vf",
                f"drawtext=text='{label}':fontfile={escape_filter_path(self.font_path)}"
                ":fontcolor=white:fontsize=48:x=(w-text_w)/2:y=(h-text_h)/2",
            ]
        command += [*ENCODE_ARGS, "-c:a", "aac", "-shortest", "-y", str(output)]
        await self.run(command, timeout=self.encode_timeout, step="solid_clip")
