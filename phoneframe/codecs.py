import logging
import subprocess
from typing import Iterable, Optional

from .errors import NoSupportedCodec
from .types import CapabilityProbe, CodecCandidate


logger = logging.getLogger(__name__)


# fragmented mp4 so the container can be written to a pipe
_MP4_ARGS = ("-movflags", "frag_keyframe+empty_moov+default_base_moof", "-pix_fmt", "yuv420p")
_WEBM_ARGS = ("-pix_fmt", "yuv420p", "-deadline", "realtime", "-cpu-used", "8")

CODEC_TABLE = {
    "video/mp4": CodecCandidate("video/mp4", "libx264", "mp4", "mp4", _MP4_ARGS + ("-preset", "veryfast")),
    "video/mp4;codecs=avc1": CodecCandidate("video/mp4;codecs=avc1", "libx264", "mp4", "mp4", _MP4_ARGS + ("-preset", "veryfast")),
    "video/webm;codecs=vp9": CodecCandidate("video/webm;codecs=vp9", "libvpx-vp9", "webm", "webm", _WEBM_ARGS + ("-row-mt", "1")),
    "video/webm;codecs=vp8": CodecCandidate("video/webm;codecs=vp8", "libvpx", "webm", "webm", _WEBM_ARGS),
    "video/webm": CodecCandidate("video/webm", "libvpx", "webm", "webm", _WEBM_ARGS),
}


def lookup(mime_type: str) -> Optional[CodecCandidate]:
    return CODEC_TABLE.get(mime_type.replace(" ", "").lower())


def negotiate(preferences: Iterable[str], probe: CapabilityProbe) -> CodecCandidate:
    """First candidate in preference order that ``probe`` accepts."""
    tried = []
    for mime in preferences:
        tried.append(mime)
        candidate = lookup(mime)
        if candidate is None:
            logger.debug("No encoder mapping for %s", mime)
            continue
        if probe(mime):
            logger.info("Negotiated %s (%s)", mime, candidate.encoder)
            return candidate
    raise NoSupportedCodec(f"None of the candidates is supported: {', '.join(tried)}")


def select_bitrate(platform_class: str, table: dict) -> int:
    try:
        return int(table[platform_class])
    except KeyError as exc:
        raise ValueError(f"No bit-rate configured for platform class {platform_class!r}") from exc


def list_ffmpeg_encoders(ffmpeg_bin: str = "ffmpeg") -> frozenset:
    """Video encoder names reported by ``ffmpeg -encoders``; empty when ffmpeg is missing."""
    try:
        p = subprocess.run(
            [ffmpeg_bin, "-hide_banner", "-encoders"],
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            check=True,
            text=True,
        )
    except (FileNotFoundError, subprocess.CalledProcessError) as exc:
        logger.warning("Cannot list ffmpeg encoders (%s)", exc)
        return frozenset()
    return parse_encoder_list(p.stdout)


def parse_encoder_list(text: str) -> frozenset:
    names = set()
    past_header = False
    for line in text.splitlines():
        line = line.strip()
        if line.startswith("------"):
            past_header = True
            continue
        if not past_header or not line:
            continue
        parts = line.split()
        # " V....D libx264   libx264 H.264 ..."
        if len(parts) >= 2 and parts[0].startswith("V"):
            names.add(parts[1])
    return frozenset(names)


class FFmpegCapabilityProbe:
    """Capability probe backed by the local ffmpeg build."""

    def __init__(self, ffmpeg_bin: str = "ffmpeg", encoders: Optional[Iterable[str]] = None):
        self.ffmpeg_bin = ffmpeg_bin
        self._encoders = frozenset(encoders) if encoders is not None else None

    @property
    def encoders(self) -> frozenset:
        if self._encoders is None:
            self._encoders = list_ffmpeg_encoders(self.ffmpeg_bin)
        return self._encoders

    def __call__(self, mime_type: str) -> bool:
        candidate = lookup(mime_type)
        return candidate is not None and candidate.encoder in self.encoders
