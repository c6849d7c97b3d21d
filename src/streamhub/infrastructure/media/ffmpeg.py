"""ffmpeg argument builders and recording helpers."""

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from streamhub.domain.models import RecordingResult, VideoQuality
from streamhub.infrastructure.media.process import ProcessController, ProcessHandle

logger = logging.getLogger(__name__)

DEFAULT_BITRATE = "2000k"
AUDIO_ARGS = ["-c:a", "aac", "-b:a", "128k", "-ar", "44100"]


@dataclass
class EncodeOptions:
    """Encoder settings for publish and transcode commands."""

    quality: Optional[VideoQuality] = None
    audio_enabled: bool = True
    video_enabled: bool = True
    loop: bool = False
    extra_args: List[str] = field(default_factory=list)


def is_device_source(source: str) -> bool:
    return source.startswith("/dev/") or source.startswith("screen://")


def _input_args(source: str, loop: bool) -> List[str]:
    if source.startswith("/dev/"):
        return ["-f", "v4l2", "-i", source]
    if source.startswith("screen://"):
        return ["-f", "x11grab", "-i", source[len("screen://"):] or ":0.0"]
    args = ["-re"]
    if loop:
        args.extend(["-stream_loop", "-1"])
    return [*args, "-i", source]


def _encode_args(options: EncodeOptions) -> List[str]:
    args: List[str] = []
    if options.video_enabled:
        args.extend(["-c:v", "libx264", "-preset", "veryfast", "-tune", "zerolatency"])
        quality = options.quality
        args.extend(["-b:v", f"{quality.bitrate}k" if quality else DEFAULT_BITRATE])
        if quality:
            args.extend(["-s", f"{quality.width}x{quality.height}", "-r", str(quality.fps)])
    else:
        args.append("-vn")

    if options.audio_enabled:
        args.extend(AUDIO_ARGS)
    else:
        args.append("-an")
    return args


def build_publish_args(source: str, output_url: str, options: Optional[EncodeOptions] = None) -> List[str]:
    """Encode ``source`` and push it to ``output_url`` as FLV."""
    options = options or EncodeOptions()
    return [
        *_input_args(source, options.loop),
        *_encode_args(options),
        *options.extra_args,
        "-f",
        "flv",
        output_url,
    ]


def build_hls_args(
    source: str,
    playlist_path: str,
    options: Optional[EncodeOptions] = None,
    segment_time: int = 2,
) -> List[str]:
    """Transcode ``source`` into a playlist plus numbered segments beside it."""
    options = options or EncodeOptions()
    segment_pattern = str(Path(playlist_path).parent / "segment_%03d.ts")
    return [
        *_input_args(source, options.loop),
        *_encode_args(options),
        *options.extra_args,
        "-f",
        "hls",
        "-hls_time",
        str(segment_time),
        "-hls_list_size",
        "0",
        "-hls_segment_filename",
        segment_pattern,
        playlist_path,
    ]


def build_subscribe_args(source_url: str, output_path: str) -> List[str]:
    """Pull ``source_url`` and write it to ``output_path``.

    MP4 and FLV outputs are re-encoded; anything else is copied as is.
    """
    args = ["-i", source_url]
    suffix = Path(output_path).suffix.lower()
    if suffix == ".mp4":
        args.extend(["-c:v", "libx264", "-c:a", "aac", "-f", "mp4"])
    elif suffix == ".flv":
        args.extend(["-c:v", "libx264", "-c:a", "aac", "-f", "flv"])
    else:
        args.extend(["-c", "copy"])
    return [*args, "-y", output_path]


def build_record_args(
    source_url: str, output_path: str, duration: Optional[float] = None
) -> List[str]:
    args = ["-i", source_url, "-c:v", "libx264", "-preset", "medium", *AUDIO_ARGS]
    if duration:
        args.extend(["-t", str(duration)])
    return [*args, "-y", output_path]


def _default_output(suffix: str = ".mp4") -> str:
    fd, name = tempfile.mkstemp(prefix="recording-", suffix=suffix)
    os.close(fd)
    return name


@dataclass
class Recording:
    """A recording running in the background."""

    handle: ProcessHandle
    output_path: str
    controller: ProcessController

    async def stop(self) -> RecordingResult:
        await self.controller.stop(self.handle)
        return _result(self.output_path, self.handle.uptime)


def _result(output_path: str, duration: Optional[float]) -> RecordingResult:
    try:
        size = os.path.getsize(output_path)
    except OSError:
        size = 0
    return RecordingResult(output_path=output_path, size=size, duration=duration)


async def record_stream(
    source_url: str,
    output: Optional[str] = None,
    duration: Optional[float] = None,
    controller: Optional[ProcessController] = None,
) -> RecordingResult:
    """Record ``source_url`` and wait for ffmpeg to finish.

    Raises:
        ConnectionError: If ffmpeg cannot be started
        RuntimeError: If ffmpeg exits with a non-zero code
    """
    controller = controller or ProcessController()
    output_path = output or _default_output()
    handle = await controller.spawn(build_record_args(source_url, output_path, duration))
    returncode = await handle.wait()
    if returncode != 0:
        raise RuntimeError(
            f"ffmpeg exited with code {returncode} while recording: {handle.stderr_tail}"
        )
    logger.info(f"Recorded {source_url} to {output_path}")
    return _result(output_path, duration if duration else handle.uptime)


async def record_stream_realtime(
    source_url: str,
    output: Optional[str] = None,
    duration: Optional[float] = None,
    controller: Optional[ProcessController] = None,
    stream_id: Optional[str] = None,
) -> Recording:
    """Start recording ``source_url`` and return immediately."""
    controller = controller or ProcessController()
    output_path = output or _default_output()
    handle = await controller.spawn(
        build_record_args(source_url, output_path, duration), stream_id=stream_id
    )
    logger.info(f"Recording {source_url} to {output_path} (pid {handle.pid})")
    return Recording(handle=handle, output_path=output_path, controller=controller)
