import asyncio
import logging
import os

from pitchperfect.config import settings

logger = logging.getLogger(__name__)


class AudioEditError(Exception):
    pass


class FfmpegAudioEditor:
    """Cuts and joins audio files with the ffmpeg CLI."""

    def __init__(self, binary: str | None = None):
        self.binary = binary or settings.ffmpeg_binary

    async def cut(
        self, source_path: str, start: float, end: float, output_path: str
    ) -> str:
        await self._run(
            "-i", source_path,
            "-ss", f"{start:.1f}",
            "-t", f"{max(end - start, 0):.1f}",
            "-ac", "1",
            output_path,
        )
        return output_path

    async def concat(self, paths: list[str], output_path: str) -> str:
        list_path = output_path + ".txt"
        with open(list_path, "w", encoding="utf-8") as f:
            for path in paths:
                f.write(f"file '{os.path.abspath(path)}'\n")
        try:
            await self._run(
                "-f", "concat", "-safe", "0",
                "-i", list_path,
                "-c", "copy",
                output_path,
            )
        finally:
            os.remove(list_path)
        return output_path

    async def _run(self, *args: str) -> None:
        os.makedirs(os.path.dirname(os.path.abspath(args[-1])), exist_ok=True)
        proc = await asyncio.create_subprocess_exec(
            self.binary,
            "-hide_banner",
            "-loglevel", "error",
            "-y",
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await proc.communicate()
        if proc.returncode != 0:
            message = stderr.decode(errors="ignore")[-500:]
            logger.error(f"ffmpeg failed ({proc.returncode}): {message}")
            raise AudioEditError(message or f"ffmpeg exited with {proc.returncode}")
