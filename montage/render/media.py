"""Per-render media loading for image and video items.

Sources are either local paths or http(s) URLs. Loading failures are
logged and remembered; the item simply renders nothing for that frame so a
single broken source never fails the whole render.
"""

import io
import logging
import subprocess
from collections import OrderedDict

import httpx
from PIL import Image

from montage.config import get_settings

logger = logging.getLogger(__name__)

# Decoded video frames kept per render (frames are reused across groups/transitions)
MAX_CACHED_FRAMES = 64


def _is_remote(src: str) -> bool:
    return src.startswith("http://") or src.startswith("https://")


class MediaCache:
    """Loads and caches decoded media for the duration of one render."""

    def __init__(self, timeout_s: float | None = None):
        settings = get_settings()
        self.ffmpeg_path = settings.ffmpeg_path
        self.timeout_s = timeout_s or settings.request_timeout_s
        self._images: dict[str, Image.Image] = {}
        self._frames: OrderedDict[tuple[str, int], Image.Image] = OrderedDict()
        self._failed: set[str] = set()

    def failed(self, src: str) -> bool:
        return src in self._failed

    def image(self, src: str) -> Image.Image | None:
        """Decoded RGBA image for a source, or None when it cannot be loaded."""
        if not src or src in self._failed:
            return None
        cached = self._images.get(src)
        if cached is not None:
            return cached

        try:
            if _is_remote(src):
                response = httpx.get(src, timeout=self.timeout_s, follow_redirects=True)
                response.raise_for_status()
                image = Image.open(io.BytesIO(response.content))
            else:
                image = Image.open(src)
            image = image.convert("RGBA")
        except (OSError, httpx.HTTPError) as e:
            logger.warning(f"[MEDIA] Could not load image {src}: {e}")
            self._failed.add(src)
            return None

        self._images[src] = image
        return image

    def video_frame(self, src: str, time_ms: int) -> Image.Image | None:
        """Decode the frame shown at ``time_ms`` of a video source."""
        if not src or src in self._failed:
            return None
        key = (src, int(time_ms))
        cached = self._frames.get(key)
        if cached is not None:
            self._frames.move_to_end(key)
            return cached

        cmd = [
            self.ffmpeg_path,
            "-v", "error",
            "-ss", f"{max(0, time_ms) / 1000:.3f}",
            "-i", src,
            "-frames:v", "1",
            "-f", "image2pipe",
            "-vcodec", "png",
            "-",
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, timeout=self.timeout_s)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"[MEDIA] Frame extraction failed for {src}: {e}")
            self._failed.add(src)
            return None

        if result.returncode == 0 and not result.stdout:
            # Seek past the end of the source: nothing to show at this time
            return None
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", "replace").strip()
            logger.warning(f"[MEDIA] Frame extraction failed for {src} at {time_ms}ms: {stderr}")
            self._failed.add(src)
            return None

        try:
            frame = Image.open(io.BytesIO(result.stdout)).convert("RGBA")
        except OSError as e:
            logger.warning(f"[MEDIA] Undecodable frame from {src}: {e}")
            self._failed.add(src)
            return None

        self._frames[key] = frame
        if len(self._frames) > MAX_CACHED_FRAMES:
            self._frames.popitem(last=False)
        return frame
