"""Output format tables for the downloader and the transcoder."""

from enum import Enum
from pathlib import Path


class DownloadFormat(Enum):
    """Target formats offered for downloads."""

    MP4 = "mp4"
    H265 = "h265"
    MOV = "mov"
    WAV = "wav"
    MP3 = "mp3"

    @property
    def label(self) -> str:
        return _DOWNLOAD_LABELS[self][0]

    @property
    def short_label(self) -> str:
        return _DOWNLOAD_LABELS[self][1]

    @property
    def is_video(self) -> bool:
        return self in (DownloadFormat.MP4, DownloadFormat.H265, DownloadFormat.MOV)

    @property
    def ytdlp_args(self) -> list[str]:
        """Format selector and post-processing flags for yt-dlp."""
        return list(_DOWNLOAD_ARGS[self])

    @classmethod
    def video_formats(cls) -> list["DownloadFormat"]:
        return [f for f in cls if f.is_video]

    @classmethod
    def audio_formats(cls) -> list["DownloadFormat"]:
        return [f for f in cls if not f.is_video]


_DOWNLOAD_LABELS = {
    DownloadFormat.MP4: ("MP4 (H.264)", "H.264"),
    DownloadFormat.H265: ("MP4 (H.265)", "H.265"),
    DownloadFormat.MOV: ("MOV (H.264)", "MOV"),
    DownloadFormat.WAV: ("WAV 24-bit 48kHz", "WAV"),
    DownloadFormat.MP3: ("MP3 320kbps", "MP3"),
}

_DOWNLOAD_ARGS = {
    DownloadFormat.MP4: [
        "-f", "bv*+ba/best",
        "--merge-output-format", "mp4",
        "--postprocessor-args",
        "ffmpeg:-c:v libx264 -preset medium -crf 18 -c:a aac -b:a 192k -pix_fmt yuv420p -movflags +faststart",
    ],
    DownloadFormat.H265: [
        "-f", "bv*+ba/best",
        "--merge-output-format", "mp4",
        "--postprocessor-args",
        "ffmpeg:-c:v libx265 -preset medium -crf 22 -c:a aac -b:a 192k -tag:v hvc1 -movflags +faststart",
    ],
    DownloadFormat.MOV: [
        "-f", "bv*+ba/best",
        "--merge-output-format", "mov",
        "--postprocessor-args",
        "ffmpeg:-c:v libx264 -preset medium -crf 18 -c:a aac -b:a 192k -pix_fmt yuv420p",
    ],
    DownloadFormat.WAV: [
        "-f", "ba/best",
        "--extract-audio",
        "--audio-format", "wav",
        "--postprocessor-args", "ffmpeg:-ar 48000 -ac 2 -c:a pcm_s24le",
    ],
    DownloadFormat.MP3: [
        "-f", "ba/best",
        "--extract-audio",
        "--audio-format", "mp3",
        "--audio-quality", "0",
    ],
}


class ConvertFormat(Enum):
    """Target formats offered for conversions."""

    WAV = "wav"
    MP3 = "mp3"
    H264 = "h264"
    H265 = "h265"
    WEBM = "webm"
    PRORES = "prores"
    WEBP = "webp"
    PNG = "png"
    JPG = "jpg"

    @property
    def label(self) -> str:
        return _CONVERT_TABLE[self][0]

    @property
    def ext(self) -> str:
        return _CONVERT_TABLE[self][1]

    @property
    def suffix(self) -> str:
        """Suffix appended to the source stem to name the output file."""
        return _CONVERT_TABLE[self][2]

    @property
    def description(self) -> str:
        return _CONVERT_TABLE[self][3]

    @property
    def scalable(self) -> bool:
        """Whether a rescale filter applies to this format."""
        return self not in (ConvertFormat.WAV, ConvertFormat.MP3)


# label, extension, filename suffix, description
_CONVERT_TABLE = {
    ConvertFormat.WAV: ("WAV", "wav", "_24bit", "48kHz 24-bit PCM"),
    ConvertFormat.MP3: ("MP3", "mp3", "", "320kbps MP3"),
    ConvertFormat.H264: ("H.264", "mp4", "_h264", "Universal playback"),
    ConvertFormat.H265: ("H.265", "mp4", "_h265", "50% smaller files"),
    ConvertFormat.WEBM: ("WebM", "webm", "_web", "Optimized for web"),
    ConvertFormat.PRORES: ("ProRes", "mov", "_prores", "Professional editing"),
    ConvertFormat.WEBP: ("WebP", "webp", "", "Smaller than PNG/JPG"),
    ConvertFormat.PNG: ("PNG", "png", "", "Lossless with alpha"),
    ConvertFormat.JPG: ("JPG", "jpg", "", "High-quality JPEG"),
}


class ProResProfile(Enum):
    """ProRes flavours, mapped to ffmpeg's prores_ks profile numbers."""

    PROXY = "proxy"
    LT = "lt"
    STANDARD = "standard"
    HQ = "hq"
    P4444 = "4444"
    P4444XQ = "4444xq"

    @property
    def ffmpeg_profile(self) -> str:
        return str(list(ProResProfile).index(self))


class RescaleOption(Enum):
    """Output scaling presets."""

    NONE = "none"
    HD720 = "720p"
    HD1080 = "1080p"
    UHD4K = "4k"
    HALF = "half"
    QUARTER = "quarter"

    @property
    def ffmpeg_scale(self) -> str | None:
        return {
            RescaleOption.NONE: None,
            RescaleOption.HD720: "1280:720",
            RescaleOption.HD1080: "1920:1080",
            RescaleOption.UHD4K: "3840:2160",
            RescaleOption.HALF: "iw/2:ih/2",
            RescaleOption.QUARTER: "iw/4:ih/4",
        }[self]


class FileCategory(Enum):
    VIDEO = "video"
    AUDIO = "audio"
    IMAGE = "image"
    UNKNOWN = "unknown"


VIDEO_EXTENSIONS = {"mp4", "mov", "avi", "mkv", "webm", "m4v", "flv", "wmv"}
AUDIO_EXTENSIONS = {"mp3", "wav", "aac", "flac", "m4a", "ogg", "wma", "aiff"}
IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "webp", "gif", "tiff", "bmp", "heic"}


def categorize_file(path: Path) -> FileCategory:
    """Classify a file by its extension."""
    ext = path.suffix.lower().lstrip(".")
    if ext in VIDEO_EXTENSIONS:
        return FileCategory.VIDEO
    if ext in AUDIO_EXTENSIONS:
        return FileCategory.AUDIO
    if ext in IMAGE_EXTENSIONS:
        return FileCategory.IMAGE
    return FileCategory.UNKNOWN
