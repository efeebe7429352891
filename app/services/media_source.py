"""Synthesize the playable-source description clients need before streaming."""

from __future__ import annotations

import logging
from pathlib import Path

from ..catalog import Descriptor
from ..identifiers import id_hash
from ..models import MediaSource, MediaStream

logger = logging.getLogger(__name__)

TICKS_PER_SECOND = 10_000_000

VIDEO_CODECS: dict[str, tuple[str, str]] = {
    "x264": ("h264", "avc1"),
    "h264": ("h264", "avc1"),
    "hevc": ("hevc", "hvc1"),
}
AUDIO_CODECS: dict[str, tuple[str, str]] = {
    "ac3": ("ac3", "ac-3"),
    "aac": ("aac", "mp4a"),
}
CHANNEL_LAYOUTS: dict[int, tuple[str, str]] = {
    2: ("Stereo", "stereo"),
    6: ("5.1 Channel", "5.1"),
}


def seconds_to_ticks(seconds: int | float) -> int:
    return int(seconds * TICKS_PER_SECOND)


class MediaSourceBuilder:
    """Builds exactly one media source per file; multi-version media is not offered."""

    def build(self, video_path: Path, descriptor: Descriptor | None) -> MediaSource:
        basename = video_path.name
        source = MediaSource(
            id=id_hash(str(video_path)),
            e_tag=id_hash(str(video_path)),
            name=basename,
            path=basename,
            size=self._file_size(video_path),
        )

        details = descriptor.stream_details if descriptor is not None else None
        if details is None:
            return source

        video = details.video
        audio = details.audio
        source.bitrate = video.bitrate or None
        if video.duration_seconds:
            source.run_time_ticks = seconds_to_ticks(video.duration_seconds)

        # Only the first three letters are an ISO 639-2 code; the rest is noise.
        language = audio.language[:3] if audio.language else None

        video_stream = MediaStream(
            index=0,
            type="Video",
            is_default=True,
            language=language,
            time_base="1/16000",
            height=video.height or None,
            width=video.width or None,
            bit_rate=video.bitrate or None,
            average_frame_rate=round(video.frame_rate, 2) if video.frame_rate else None,
            real_frame_rate=round(video.frame_rate, 2) if video.frame_rate else None,
            codec=video.codec or None,
        )
        mapped_video = VIDEO_CODECS.get(video.codec.lower())
        if mapped_video is not None:
            video_stream.codec, video_stream.codec_tag = mapped_video
        else:
            logger.info("Descriptor of %s has unknown video codec %r", basename, video.codec)
        source.media_streams.append(video_stream)

        audio_stream = MediaStream(
            index=1,
            type="Audio",
            is_default=True,
            language=language,
            time_base="1/48000",
            sample_rate=48_000,
            audio_spatial_format="None",
            localized_default="Default",
            localized_external="External",
            bit_rate=audio.bitrate or None,
            channels=audio.channels or None,
            codec=audio.codec or None,
        )
        layout = CHANNEL_LAYOUTS.get(audio.channels)
        if layout is not None:
            audio_stream.title, audio_stream.channel_layout = layout
        else:
            logger.info(
                "Descriptor of %s has unknown audio channel count %d", basename, audio.channels
            )
        mapped_audio = AUDIO_CODECS.get(audio.codec.lower())
        if mapped_audio is not None:
            audio_stream.codec, audio_stream.codec_tag = mapped_audio
        else:
            logger.info("Descriptor of %s has unknown audio codec %r", basename, audio.codec)
        audio_stream.display_title = " - ".join(
            part for part in (audio_stream.title, (audio_stream.codec or "").upper()) if part
        )
        source.media_streams.append(audio_stream)
        return source

    @staticmethod
    def _file_size(path: Path) -> int | None:
        try:
            return path.stat().st_size
        except OSError:
            return None
