"""ffmpeg conversion service."""

import logging
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path

from mediabatch.batch.orchestrator import (
    BatchItem,
    BatchOrchestrator,
    BatchProgress,
    BatchResult,
    expand_matrix,
)
from mediabatch.config import MediaBatchConfig
from mediabatch.formats import (
    ConvertFormat,
    FileCategory,
    ProResProfile,
    RescaleOption,
    categorize_file,
)
from mediabatch.progress.parser import LineParser, TranscodeProgressParser
from mediabatch.tools.resolver import ExecutableResolver

logger = logging.getLogger(__name__)


def output_path(source: Path, fmt: ConvertFormat, output_dir: Path) -> Path:
    """Where ``source`` converted to ``fmt`` is written."""
    return output_dir / f"{source.stem}{fmt.suffix}.{fmt.ext}"


def auto_select_formats(files: Iterable[Path]) -> list[ConvertFormat]:
    """Pick a sensible default target for the dropped files."""
    categories = {categorize_file(f) for f in files}
    if FileCategory.VIDEO in categories:
        return [ConvertFormat.H264]
    if FileCategory.AUDIO in categories:
        return [ConvertFormat.WAV]
    if FileCategory.IMAGE in categories:
        return [ConvertFormat.WEBP]
    return []


def webify_formats(files: Iterable[Path]) -> list[ConvertFormat]:
    """Web-friendly targets for every kind of media present."""
    categories = {categorize_file(f) for f in files}
    formats = []
    if FileCategory.VIDEO in categories:
        formats.append(ConvertFormat.WEBM)
    if FileCategory.IMAGE in categories:
        formats.append(ConvertFormat.WEBP)
    if FileCategory.AUDIO in categories:
        formats.append(ConvertFormat.MP3)
    return formats


# Codec flags per target format
_CODEC_ARGS = {
    ConvertFormat.WAV: ["-ar", "48000", "-ac", "2", "-c:a", "pcm_s24le"],
    ConvertFormat.MP3: ["-c:a", "libmp3lame", "-q:a", "0"],
    ConvertFormat.H264: [
        "-c:v", "libx264", "-preset", "medium", "-crf", "18",
        "-c:a", "aac", "-b:a", "192k",
        "-pix_fmt", "yuv420p", "-movflags", "+faststart",
    ],
    ConvertFormat.H265: [
        "-c:v", "libx265", "-preset", "medium", "-crf", "22",
        "-c:a", "aac", "-b:a", "192k", "-tag:v", "hvc1",
    ],
    ConvertFormat.WEBM: [
        "-c:v", "libvpx-vp9", "-crf", "30", "-b:v", "0",
        "-c:a", "libopus", "-b:a", "128k",
    ],
    ConvertFormat.WEBP: [
        "-c:v", "libwebp", "-lossless", "0", "-quality", "90", "-pix_fmt", "yuva420p",
    ],
    ConvertFormat.PNG: ["-c:v", "png"],
    ConvertFormat.JPG: ["-q:v", "2"],
}


class ConvertCommandBuilder:
    """Build ffmpeg invocations from the format table."""

    def __init__(
        self,
        tool: str,
        *,
        prores_profile: ProResProfile = ProResProfile.HQ,
        rescale: RescaleOption = RescaleOption.NONE,
    ):
        self.tool = tool
        self.prores_profile = prores_profile
        self.rescale = rescale

    def codec_args(self, fmt: ConvertFormat) -> list[str]:
        if fmt is ConvertFormat.PRORES:
            return [
                "-c:v", "prores_ks",
                "-profile:v", self.prores_profile.ffmpeg_profile,
                "-c:a", "pcm_s24le",
            ]
        return list(_CODEC_ARGS[fmt])

    def build(self, executable: str, item: BatchItem) -> list[str]:
        source = Path(item.source)
        fmt = ConvertFormat(item.target)
        cmd = [executable, "-i", str(source), "-y"]

        scale = self.rescale.ffmpeg_scale
        if scale and fmt.scalable:
            cmd.extend(["-vf", f"scale={scale}:flags=lanczos"])

        cmd.extend(self.codec_args(fmt))
        cmd.append(str(output_path(source, fmt, item.output_dir)))
        return cmd

    def parser_for(self, item: BatchItem) -> LineParser:
        fmt = ConvertFormat(item.target)
        return TranscodeProgressParser(f"{Path(item.source).name} → {fmt.label}")


class ConvertService:
    """Convert every file into every selected format with ffmpeg."""

    def __init__(self, config: MediaBatchConfig, resolver: ExecutableResolver):
        self.config = config
        self.resolver = resolver
        self.orchestrator: BatchOrchestrator | None = None

    async def convert(
        self,
        files: Sequence[Path],
        formats: Sequence[ConvertFormat],
        *,
        prores_profile: ProResProfile | None = None,
        rescale: RescaleOption | None = None,
        output_dir: Path | None = None,
        progress_callback: Callable[[BatchProgress], None] | None = None,
    ) -> BatchResult | None:
        """Run the files x formats matrix, source-major.

        Output goes beside each source unless ``output_dir`` is given.
        Returns None when there is nothing to convert.
        """
        if not files or not formats:
            logger.warning("Nothing to convert: no files or no formats selected")
            return None

        if prores_profile is None:
            prores_profile = ProResProfile(self.config.prores_profile)
        if rescale is None:
            rescale = RescaleOption(self.config.rescale)
        if output_dir is not None:
            output_dir = output_dir.expanduser()
            output_dir.mkdir(parents=True, exist_ok=True)

        builder = ConvertCommandBuilder(
            self.config.transcoder_binary,
            prores_profile=prores_profile,
            rescale=rescale,
        )
        items = expand_matrix(files, [f.value for f in formats], output_dir)

        logger.info(
            f"Converting {len(files)} file(s) to {len(formats)} format(s): {len(items)} conversions",
        )
        self.orchestrator = BatchOrchestrator(builder, self.resolver, progress_callback)
        return await self.orchestrator.run(items)

    @staticmethod
    def output_files(result: BatchResult) -> list[Path]:
        """Outputs of the conversions that succeeded."""
        return [
            output_path(
                Path(r.item.source),
                ConvertFormat(r.item.target),
                r.item.output_dir,
            )
            for r in result.succeeded
        ]

    def cancel(self) -> None:
        """Cancel the running conversion batch, if any."""
        if self.orchestrator is not None:
            self.orchestrator.cancel()
