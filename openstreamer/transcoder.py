"""FFmpeg command-line construction for ladder renditions."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class HWAccel(str, enum.Enum):
    """Hardware acceleration backend for video encoding."""

    NONE = "none"
    NVENC = "nvenc"


@dataclass
class Profile:
    """One transcoding output rendition."""

    width: int = 0
    height: int = 0
    bitrate: str = ""
    codec: str = ""
    preset: str = ""
    codec_profile: str = ""
    codec_level: str = ""
    max_bitrate: int = 0
    framerate: float = 0.0
    keyframe_interval: int = 0


@dataclass
class VideoTranscodeConfig:
    copy: bool = False


@dataclass
class AudioTranscodeConfig:
    codec: str = ""
    bitrate: int = 0
    sample_rate: int = 0
    channels: int = 0
    normalize: bool = False
    copy: bool = False


@dataclass
class TranscoderGlobalConfig:
    hw: HWAccel = HWAccel.NONE
    gop: int = 0
    fps: int = 0


@dataclass
class TranscoderConfig:
    video: VideoTranscodeConfig = field(default_factory=VideoTranscodeConfig)
    audio: AudioTranscodeConfig = field(default_factory=AudioTranscodeConfig)
    global_: TranscoderGlobalConfig = field(default_factory=TranscoderGlobalConfig)
    extra_args: list[str] = field(default_factory=list)


@dataclass
class RenditionTarget:
    """Binds one encoded ladder rung to its output buffer."""

    buffer_id: str
    profile: Profile


_INPUT_ARGS = (
    "-hide_banner",
    "-loglevel", "warning",
    "-fflags", "+genpts+discardcorrupt",
    "-analyzeduration", "15000000",
    "-probesize", "33554432",
    "-f", "mpegts",
    "-i", "pipe:0",
    "-map", "0:v:0?",
    "-map", "0:a:0?",
)

_SCALE_CHAIN = (
    "force_original_aspect_ratio=decrease,"
    "pad=ceil(iw/2)*2:ceil(ih/2)*2:(ow-iw)/2:(oh-ih)/2"
)

_AUDIO_ENCODERS = {
    "aac": "aac",
    "mp3": "libmp3lame",
    "opus": "libopus",
    "ac3": "ac3",
}


def build_ffmpeg_args(
    profiles: list[Profile], config: TranscoderConfig | None = None
) -> list[str]:
    """Build arguments that read MPEG-TS on stdin and write MPEG-TS to stdout.

    Only the first profile is used.
    """
    if config is None:
        config = TranscoderConfig()
    if not profiles:
        raise ValueError("transcoder: no video profiles")
    profile = profiles[0]

    args = list(_INPUT_ARGS)

    if config.video.copy:
        args += ["-c:v", "copy"]
    else:
        vf = build_scale_filter(profile.width, profile.height)
        if vf:
            args += ["-vf", vf]
        args += ["-c:v", normalize_video_encoder(profile.codec, config.global_.hw)]
        if profile.preset:
            args += ["-preset", profile.preset]
        if profile.codec_profile:
            args += ["-profile:v", profile.codec_profile]
        if profile.codec_level:
            args += ["-level", profile.codec_level]
        args += ["-b:v", profile.bitrate]
        if profile.max_bitrate > 0:
            args += ["-maxrate", f"{profile.max_bitrate}k"]
            args += ["-bufsize", f"{profile.max_bitrate * 2}k"]
        gop = gop_frames(config, profile)
        if gop > 0:
            args += ["-g", str(gop), "-keyint_min", str(max(1, gop // 2))]
        if profile.framerate > 0:
            args += ["-r", f"{profile.framerate:.3f}"]
        elif config.global_.fps > 0:
            args += ["-r", str(config.global_.fps)]

    if config.audio.copy:
        args += ["-c:a", "copy"]
    else:
        args += audio_encode_args(config)

    args += config.extra_args
    args += ["-f", "mpegts", "pipe:1"]
    return args


def build_scale_filter(width: int, height: int) -> str:
    """Return a scale+pad filter, or "" when no dimension is set."""
    if width <= 0 and height <= 0:
        return ""
    if width > 0 and height > 0:
        return f"scale={width}:{height}:{_SCALE_CHAIN}"
    if width > 0:
        return f"scale={width}:-2:{_SCALE_CHAIN}"
    return f"scale=-2:{height}:{_SCALE_CHAIN}"


def normalize_video_encoder(codec: str, hw: HWAccel | str = HWAccel.NONE) -> str:
    """Map a codec name to the FFmpeg encoder to use."""
    name = codec.strip().lower()
    nvenc = hw == HWAccel.NVENC
    if name in ("", "h264", "avc"):
        return "h264_nvenc" if nvenc else "libx264"
    if name in ("h265", "hevc"):
        return "hevc_nvenc" if nvenc else "libx265"
    if name == "vp9":
        return "libvpx-vp9"
    if name == "av1":
        return "libsvtav1"
    if any(tag in name for tag in ("nvenc", "qsv", "videotoolbox")):
        return codec
    if any(tag in name for tag in ("264", "265", "hevc")):
        return codec
    return "libx264"


def gop_frames(config: TranscoderConfig, profile: Profile) -> int:
    """Return the GOP length in frames, or 0 for the encoder default."""
    if config.global_.gop > 0:
        return config.global_.gop
    if profile.keyframe_interval > 0:
        fps = profile.framerate
        if fps <= 0 and config.global_.fps > 0:
            fps = float(config.global_.fps)
        if fps <= 0:
            fps = 25.0
        return max(1, int(profile.keyframe_interval * fps + 0.5))
    return 0


def audio_encode_args(config: TranscoderConfig) -> list[str]:
    """Return the audio encoding arguments for ``config``."""
    audio = config.audio
    name = str(getattr(audio.codec, "value", audio.codec)).strip().lower()
    encoder = _AUDIO_ENCODERS.get(name, "aac")
    bitrate = audio.bitrate if audio.bitrate > 0 else 128
    args = ["-c:a", encoder, "-b:a", f"{bitrate}k"]
    if audio.sample_rate > 0:
        args += ["-ar", str(audio.sample_rate)]
    if audio.channels > 0:
        args += ["-ac", str(audio.channels)]
    if audio.normalize:
        args += ["-af", "loudnorm=I=-23:LRA=7:TP=-2"]
    return args