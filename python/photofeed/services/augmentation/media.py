"""Media collaborators: duration probe, download, audio extraction.

ffprobe/ffmpeg run as asyncio subprocesses. Every invocation carries a
timeout; on expiry the process is killed and reaped before
MediaTimeoutError is raised.

Exit status classification:
- 0: success
- killed by a signal (negative returncode) or abort/segfault exit codes
  (134, 139): ProcessingCrashError, a permanent property of the input
- any other non-zero exit: TransientMediaError
"""

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

import httpx

from photofeed.logging import get_logger
from photofeed.services.augmentation.errors import (
    LinkExpiredError,
    MediaTimeoutError,
    ProcessingCrashError,
    TransientMediaError,
)
from photofeed.services.redact import fingerprint

logger = get_logger(__name__)

# 128 + SIGABRT, 128 + SIGSEGV as reported through a shell wrapper
CRASH_EXIT_CODES = frozenset({134, 139})

# Statuses a signed media URL returns once it has expired or been revoked
EXPIRED_LINK_STATUSES = frozenset({401, 403, 410})

AUDIO_SAMPLE_RATE = 16000

USER_AGENT = "PhotofeedMedia/1.0"

STDERR_TAIL_CHARS = 500


@dataclass(frozen=True)
class ToolResult:
    returncode: int
    stdout: bytes
    stderr: bytes

    def stderr_tail(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")[-STDERR_TAIL_CHARS:]


async def run_tool(args: list[str], *, timeout_s: float, stage: str) -> ToolResult:
    """Run an external tool, killing it if it exceeds timeout_s.

    Raises:
        MediaTimeoutError: The tool ran past its deadline.
        TransientMediaError: The binary could not be started.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
        )
    except OSError as e:
        raise TransientMediaError(f"Could not start {args[0]}: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError as e:
        proc.kill()
        await proc.wait()
        logger.warning("media_tool_timeout", stage=stage, timeout_s=timeout_s)
        raise MediaTimeoutError(stage, timeout_s) from e

    return ToolResult(returncode=proc.returncode, stdout=stdout, stderr=stderr)


def check_tool_result(tool: str, result: ToolResult) -> None:
    """Raise the appropriate error for a failed tool run.

    Raises:
        ProcessingCrashError: Signal termination or crash exit code.
        TransientMediaError: Any other non-zero exit.
    """
    if result.returncode == 0:
        return
    if result.returncode < 0 or result.returncode in CRASH_EXIT_CODES:
        raise ProcessingCrashError(tool, result.returncode, result.stderr_tail())
    raise TransientMediaError(
        f"{tool} exited with code {result.returncode}: {result.stderr_tail()}"
    )


class MediaTools:
    """ffprobe/ffmpeg/httpx wrappers used by the pipeline.

    Args:
        client: Shared HTTP client for media downloads.
        ffmpeg_binary: ffmpeg executable.
        ffprobe_binary: ffprobe executable.
        probe_timeout_s: Duration probe limit.
        download_timeout_s: Whole-download limit.
        extract_timeout_s: Audio extraction limit.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        ffmpeg_binary: str = "ffmpeg",
        ffprobe_binary: str = "ffprobe",
        probe_timeout_s: float = 30,
        download_timeout_s: float = 60,
        extract_timeout_s: float = 300,
    ):
        self.client = client
        self.ffmpeg_binary = ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary
        self.probe_timeout_s = probe_timeout_s
        self.download_timeout_s = download_timeout_s
        self.extract_timeout_s = extract_timeout_s

    async def probe_duration(self, media_url: str) -> float | None:
        """Return the media duration in seconds, or None if it cannot be determined."""
        cmd = [
            self.ffprobe_binary,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "json",
            media_url,
        ]
        try:
            result = await run_tool(cmd, timeout_s=self.probe_timeout_s, stage="probe")
        except TransientMediaError as e:
            logger.info("media_probe_failed", url_fp=fingerprint(media_url), error=str(e))
            return None

        if result.returncode != 0:
            logger.info(
                "media_probe_failed",
                url_fp=fingerprint(media_url),
                returncode=result.returncode,
            )
            return None

        try:
            data = json.loads(result.stdout.decode("utf-8"))
            duration = float(data.get("format", {}).get("duration", 0))
        except (ValueError, TypeError, AttributeError):
            return None
        return duration if duration > 0 else None

    async def download(self, media_url: str, dest: Path) -> Path:
        """Stream media_url into dest.

        Raises:
            LinkExpiredError: Upstream rejected the signed URL.
            MediaTimeoutError: The download exceeded its limit.
            TransientMediaError: Any other network or HTTP failure.
        """
        if urlparse(media_url).scheme.lower() not in ("http", "https"):
            raise TransientMediaError("Unsupported media URL scheme")

        try:
            await asyncio.wait_for(self._stream_to_file(media_url, dest), self.download_timeout_s)
        except asyncio.TimeoutError as e:
            raise MediaTimeoutError("download", self.download_timeout_s) from e
        except httpx.TimeoutException as e:
            raise MediaTimeoutError("download", self.download_timeout_s) from e
        except httpx.HTTPError as e:
            raise TransientMediaError(f"Media download failed: {e}") from e
        return dest

    async def _stream_to_file(self, media_url: str, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        async with self.client.stream(
            "GET",
            media_url,
            headers={"User-Agent": USER_AGENT},
            timeout=self.download_timeout_s,
            follow_redirects=True,
        ) as response:
            if response.status_code in EXPIRED_LINK_STATUSES:
                raise LinkExpiredError(response.status_code)
            if response.status_code >= 400:
                raise TransientMediaError(f"Media download returned status {response.status_code}")

            with dest.open("wb") as f:
                async for chunk in response.aiter_bytes(chunk_size=65536):
                    f.write(chunk)

    async def extract_audio(self, media_file: Path, audio_file: Path) -> Path:
        """Extract a mono 16 kHz PCM WAV track.

        Raises:
            ProcessingCrashError: ffmpeg crashed on this input.
            MediaTimeoutError: Extraction exceeded its limit (process killed).
            TransientMediaError: ffmpeg failed for another reason.
        """
        cmd = [
            self.ffmpeg_binary,
            "-y",
            "-nostdin",
            "-i",
            str(media_file),
            "-vn",
            "-ac",
            "1",
            "-ar",
            str(AUDIO_SAMPLE_RATE),
            "-c:a",
            "pcm_s16le",
            str(audio_file),
        ]
        result = await run_tool(cmd, timeout_s=self.extract_timeout_s, stage="extract_audio")
        check_tool_result("ffmpeg", result)
        return audio_file
