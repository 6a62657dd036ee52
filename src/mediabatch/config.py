"""Configuration management for mediabatch."""

from pathlib import Path

import tomli
from pydantic import BaseModel, Field, field_validator

from mediabatch.formats import ConvertFormat, DownloadFormat, ProResProfile, RescaleOption


def default_known_paths() -> dict[str, list[str]]:
    """Well-known install locations for the tools mediabatch drives."""
    return {
        "yt-dlp": [
            "/opt/homebrew/bin/yt-dlp",
            "/usr/local/bin/yt-dlp",
            "/usr/bin/yt-dlp",
        ],
        "ffmpeg": [
            "/opt/homebrew/bin/ffmpeg",
            "/usr/local/bin/ffmpeg",
            "/usr/bin/ffmpeg",
        ],
        "brew": [
            "/opt/homebrew/bin/brew",
            "/usr/local/bin/brew",
        ],
    }


class MediaBatchConfig(BaseModel):
    """Main configuration for mediabatch."""

    # Paths
    download_dir: Path = Field(default=Path("~/Downloads"))
    log_dir: Path = Field(default=Path("~/.local/share/mediabatch/logs"))
    bundled_bin_dir: Path | None = None

    # Executable discovery
    downloader_binary: str = Field(default="yt-dlp")
    transcoder_binary: str = Field(default="ffmpeg")
    package_manager: str = Field(default="brew")
    which_command: str = Field(default="/usr/bin/which")
    known_paths: dict[str, list[str]] = Field(default_factory=default_known_paths)

    # Timeout Settings (seconds)
    resolver_timeout: int = Field(default=10)

    # Download defaults
    default_download_format: str = Field(default=DownloadFormat.MP4.value)
    download_full_playlist: bool = Field(default=False)

    # Conversion defaults
    default_convert_format: str = Field(default=ConvertFormat.WAV.value)
    prores_profile: str = Field(default=ProResProfile.HQ.value)
    rescale: str = Field(default=RescaleOption.NONE.value)

    # Display
    label_max_length: int = Field(default=30)

    @field_validator("download_dir", "log_dir", "bundled_bin_dir", mode="before")
    @classmethod
    def expand_paths(cls, v: Path | str | None) -> Path | None:
        """Expand user home directory in paths."""
        if v is None:
            return None
        if isinstance(v, str):
            v = Path(v)
        return v.expanduser().resolve()

    @field_validator("default_download_format")
    @classmethod
    def known_download_format(cls, v: str) -> str:
        DownloadFormat(v)
        return v

    @field_validator("default_convert_format")
    @classmethod
    def known_convert_format(cls, v: str) -> str:
        ConvertFormat(v)
        return v

    @field_validator("prores_profile")
    @classmethod
    def known_prores_profile(cls, v: str) -> str:
        ProResProfile(v)
        return v

    @field_validator("rescale")
    @classmethod
    def known_rescale(cls, v: str) -> str:
        RescaleOption(v)
        return v

    @field_validator("resolver_timeout", "label_max_length")
    @classmethod
    def positive(cls, v: int) -> int:
        if v <= 0:
            msg = "must be greater than zero"
            raise ValueError(msg)
        return v

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        for dir_path in [self.download_dir, self.log_dir]:
            dir_path.mkdir(parents=True, exist_ok=True)


def load_config(config_path: Path | None = None) -> MediaBatchConfig:
    """Load configuration from file or defaults."""
    if config_path is None:
        # Check common config locations (user config first)
        possible_paths = [
            Path.home() / ".config" / "mediabatch" / "config.toml",
            Path.cwd() / "mediabatch.toml",
        ]

        for path in possible_paths:
            if path.exists():
                config_path = path
                break

    if config_path and config_path.exists():
        with open(config_path, "rb") as f:
            config_data = tomli.load(f)
        return MediaBatchConfig(**config_data)
    # Use defaults
    return MediaBatchConfig()


def create_sample_config(path: Path) -> None:
    """Create a sample configuration file."""
    sample_config = """# mediabatch Configuration
# =======================

# ============================================================================
# COMMONLY CUSTOMIZED SETTINGS
# ============================================================================

download_dir = "~/Downloads"                      # Where downloaded media is saved
log_dir = "~/.local/share/mediabatch/logs"        # Auto-created: log files

# Download defaults
default_download_format = "mp4"                   # mp4, h265, mov, wav, mp3
download_full_playlist = false                    # Download whole playlists instead of the linked item

# Conversion defaults
default_convert_format = "wav"                    # wav, mp3, h264, h265, webm, prores, webp, png, jpg
prores_profile = "hq"                             # proxy, lt, standard, hq, 4444, 4444xq
rescale = "none"                                  # none, 720p, 1080p, 4k, half, quarter

# ============================================================================
# ADVANCED SETTINGS - Most users can leave these as defaults
# ============================================================================

# Executable discovery
# bundled_bin_dir = "/opt/mediabatch/bin"         # Checked first when set
downloader_binary = "yt-dlp"
transcoder_binary = "ffmpeg"
package_manager = "brew"                          # Asked for its prefix (<prefix>/bin/<tool>)
which_command = "/usr/bin/which"                  # Last-resort PATH lookup
resolver_timeout = 10                             # Seconds allowed for brew/which lookups

label_max_length = 30                             # Truncate progress labels in the CLI

# [known_paths]
# "yt-dlp" = ["/opt/homebrew/bin/yt-dlp", "/usr/local/bin/yt-dlp", "/usr/bin/yt-dlp"]
# "ffmpeg" = ["/opt/homebrew/bin/ffmpeg", "/usr/local/bin/ffmpeg", "/usr/bin/ffmpeg"]
# "brew" = ["/opt/homebrew/bin/brew", "/usr/local/bin/brew"]
"""

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        f.write(sample_config)
