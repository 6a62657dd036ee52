"""yt-dlp download service."""

import asyncio
import logging
import re
from collections.abc import Callable, Iterable
from enum import Enum
from pathlib import Path
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from mediabatch.batch.orchestrator import (
    BatchItem,
    BatchOrchestrator,
    BatchProgress,
    BatchResult,
)
from mediabatch.config import MediaBatchConfig
from mediabatch.formats import DownloadFormat
from mediabatch.progress.parser import LineParser, parse_line
from mediabatch.tools.resolver import ExecutableResolver

logger = logging.getLogger(__name__)


class Platform(Enum):
    YOUTUBE = "youtube"
    TIKTOK = "tiktok"
    INSTAGRAM = "instagram"
    UNKNOWN = "unknown"


def detect_platform(url: str) -> Platform:
    lower = url.lower()
    if "youtube.com" in lower or "youtu.be" in lower:
        return Platform.YOUTUBE
    if "tiktok.com" in lower:
        return Platform.TIKTOK
    if "instagram.com" in lower or "instagr.am" in lower:
        return Platform.INSTAGRAM
    return Platform.UNKNOWN


def is_playlist_url(text: str) -> bool:
    lower = text.lower()
    return "list=" in lower or "/playlist" in lower


def normalize_url(raw: str) -> str | None:
    """Add a scheme and expand youtu.be short links to watch URLs."""
    s = raw.strip()
    if not s:
        return None
    if not s.startswith(("http://", "https://")):
        s = "https://" + s

    parts = urlsplit(s)
    if parts.hostname and "youtu.be" in parts.hostname:
        video_id = parts.path.strip("/")
        if video_id:
            query = [(k, v) for k, v in parse_qsl(parts.query) if k != "v"]
            query.insert(0, ("v", video_id))
            parts = parts._replace(
                netloc="www.youtube.com",
                path="/watch",
                query=urlencode(query),
            )
    return urlunsplit(parts)


# Links pasted back to back without whitespace get split before each scheme
_GLUED_URL_RE = re.compile(r"(?<=\S)(?=https?://)")
_SUPPORTED_URL_RE = re.compile(
    r"(?i)\b(?:https?://)?(?:(?:www\.)?(?:youtube\.com|youtu\.be|tiktok\.com|"
    r"vm\.tiktok\.com|vt\.tiktok\.com|instagram\.com|instagr\.am)\S+)",
)


def extract_urls(text: str) -> list[str]:
    """Pull supported links out of free text, normalised and de-duplicated."""
    text = _GLUED_URL_RE.sub("\n", text)
    seen: set[str] = set()
    urls = []
    for match in _SUPPORTED_URL_RE.finditer(text):
        url = normalize_url(match.group(0))
        if url and url not in seen:
            seen.add(url)
            urls.append(url)
    return urls


def collect_links(entries: Iterable[str]) -> list[str]:
    """Normalise user-supplied links, one or many per entry.

    Entries containing recognised platform links are scanned with
    ``extract_urls``; anything else is taken as a single link.
    """
    seen: set[str] = set()
    links = []
    for entry in entries:
        for line in entry.splitlines():
            line = line.strip()
            if not line:
                continue
            found = extract_urls(line) or [normalize_url(line)]
            for url in found:
                if url and url not in seen:
                    seen.add(url)
                    links.append(url)
    return links


class DownloadCommandBuilder:
    """Build yt-dlp invocations for one output format."""

    def __init__(
        self,
        tool: str,
        download_format: DownloadFormat,
        *,
        full_playlist: bool = False,
        ffmpeg_path: str | None = None,
    ):
        self.tool = tool
        self.download_format = download_format
        self.full_playlist = full_playlist
        self.ffmpeg_path = ffmpeg_path

    def output_template(self, url: str, output_dir: Path) -> str:
        platform = detect_platform(url)
        if platform in (Platform.TIKTOK, Platform.INSTAGRAM):
            template = "%(uploader)s_%(id)s.%(ext)s"
        else:
            template = "%(title)s.%(ext)s"
        return str(output_dir / template)

    def build(self, executable: str, item: BatchItem) -> list[str]:
        url = item.source
        cmd = [
            executable,
            "--restrict-filenames",
            "--newline",
            "--progress",
            "--output",
            self.output_template(url, item.output_dir),
        ]

        if not self.full_playlist:
            cmd.append("--no-playlist")

        if self.ffmpeg_path:
            cmd.extend(["--ffmpeg-location", self.ffmpeg_path])

        fmt = DownloadFormat(item.target)
        if detect_platform(url) is Platform.INSTAGRAM and fmt.is_video:
            # Separate video and audio files, no merge
            cmd.extend(["-f", "bv*,ba"])
        else:
            cmd.extend(fmt.ytdlp_args)

        cmd.append(url)
        return cmd

    def parser_for(self, item: BatchItem) -> LineParser:
        return parse_line


class DownloadService:
    """Download a list of links with yt-dlp."""

    def __init__(self, config: MediaBatchConfig, resolver: ExecutableResolver):
        self.config = config
        self.resolver = resolver
        self.orchestrator: BatchOrchestrator | None = None

    async def download(
        self,
        links: Iterable[str],
        download_format: DownloadFormat | None = None,
        destination: Path | None = None,
        *,
        full_playlist: bool | None = None,
        progress_callback: Callable[[BatchProgress], None] | None = None,
    ) -> BatchResult | None:
        """Download every link in order. Returns None when there is nothing to do."""
        urls = collect_links(links)
        if not urls:
            logger.warning("No links to download")
            return None

        if download_format is None:
            download_format = DownloadFormat(self.config.default_download_format)
        if destination is None:
            destination = self.config.download_dir
        if full_playlist is None:
            full_playlist = self.config.download_full_playlist

        destination = destination.expanduser()
        destination.mkdir(parents=True, exist_ok=True)

        ffmpeg_path = await asyncio.get_running_loop().run_in_executor(
            None,
            self.resolver.resolve,
            self.config.transcoder_binary,
        )
        if ffmpeg_path is None:
            logger.warning(
                f"{self.config.transcoder_binary} not found; merged and converted formats may fail",
            )

        builder = DownloadCommandBuilder(
            self.config.downloader_binary,
            download_format,
            full_playlist=full_playlist,
            ffmpeg_path=ffmpeg_path,
        )
        items = [BatchItem(url, download_format.value, destination) for url in urls]

        logger.info(
            f"Downloading {len(items)} link(s) as {download_format.label} to {destination}",
        )
        self.orchestrator = BatchOrchestrator(builder, self.resolver, progress_callback)
        return await self.orchestrator.run(items)

    def cancel(self) -> None:
        """Cancel the running download batch, if any."""
        if self.orchestrator is not None:
            self.orchestrator.cancel()
