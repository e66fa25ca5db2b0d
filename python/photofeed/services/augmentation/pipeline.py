"""Media augmentation pipeline.

Per item: Queued -> Running -> Succeeded | SkippedPermanent | FailedTransient

Stages:
1. terminal record exists -> return it
2. probe duration; below min_duration_s -> skip "too_short"
3. download + extract mono 16 kHz audio + transcribe; any tool crash -> skip
   "processing_crash"
4. transcript shorter than min_transcript_chars -> skip "too_short_transcript"
5. quality gate -> skip "low_quality" with diagnostics
6. summarize; sentinel -> skip "insufficient_content"
7. persist success

Transient failures (expired link, network, timeouts, provider errors)
propagate to the caller and leave no record. Scratch files are removed
whatever the outcome.
"""

import asyncio
import shutil
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

from photofeed.logging import get_logger
from photofeed.services.augmentation.errors import ProcessingCrashError
from photofeed.services.augmentation.quality import assess_transcript
from photofeed.services.augmentation.store import AugmentationStore
from photofeed.services.augmentation.summarizer import INSUFFICIENT_CONTENT
from photofeed.services.augmentation.transcript import Transcript
from photofeed.services.redact import fingerprint

logger = get_logger(__name__)


class MediaCollaborator(Protocol):
    async def probe_duration(self, media_url: str) -> float | None: ...

    async def download(self, media_url: str, dest: Path) -> Path: ...

    async def extract_audio(self, media_file: Path, audio_file: Path) -> Path: ...


class Transcriber(Protocol):
    async def transcribe(self, audio_file: Path) -> Transcript: ...


class Summarizer(Protocol):
    async def summarize(self, transcript: str, meaningful_words: int) -> str: ...


class AugmentationPipeline:
    """Runs one item through the stages above.

    Args:
        store: Terminal record store.
        media: Probe/download/extract collaborator.
        transcriber: Speech-to-text collaborator.
        summarizer: Summarization collaborator.
        scratch_dir: Parent directory for per-job scratch files.
        min_duration_s: Duration gate.
        min_transcript_chars: Short transcript gate.
        max_marker_density: Quality gate density ceiling.
        min_meaningful_words: Quality gate word floor.
    """

    def __init__(
        self,
        store: AugmentationStore,
        media: MediaCollaborator,
        transcriber: Transcriber,
        summarizer: Summarizer,
        scratch_dir: Path,
        *,
        min_duration_s: float,
        min_transcript_chars: int,
        max_marker_density: float,
        min_meaningful_words: int,
    ):
        self.store = store
        self.media = media
        self.transcriber = transcriber
        self.summarizer = summarizer
        self.scratch_dir = scratch_dir
        self.min_duration_s = min_duration_s
        self.min_transcript_chars = min_transcript_chars
        self.max_marker_density = max_marker_density
        self.min_meaningful_words = min_meaningful_words

    async def process(self, album_token: str, item_id: str, media_url: str) -> dict[str, Any]:
        """Process one item and return its terminal record.

        Raises:
            TransientMediaError: Retryable media failure; nothing was recorded.
            LLMError: Summarization provider failure; nothing was recorded.
        """
        existing = await asyncio.to_thread(self.store.get, album_token, item_id)
        if existing is not None:
            return existing

        log = logger.bind(token_fp=fingerprint(album_token), item_id=item_id)

        duration = await self.media.probe_duration(media_url)
        if duration is not None and duration < self.min_duration_s:
            log.info("augmentation_skipped", reason="too_short", duration_s=duration)
            return await self._skip(album_token, item_id, "too_short", durationS=duration)

        job_dir = self.scratch_dir / uuid4().hex
        try:
            return await self._run_stages(album_token, item_id, media_url, job_dir, log)
        finally:
            await asyncio.to_thread(shutil.rmtree, job_dir, True)

    async def _run_stages(
        self, album_token: str, item_id: str, media_url: str, job_dir: Path, log: Any
    ) -> dict[str, Any]:
        await asyncio.to_thread(job_dir.mkdir, parents=True, exist_ok=True)

        try:
            media_file = await self.media.download(media_url, job_dir / "media")
            audio_file = await self.media.extract_audio(media_file, job_dir / "audio.wav")
            transcript = await self.transcriber.transcribe(audio_file)
        except ProcessingCrashError as e:
            log.warning(
                "augmentation_skipped",
                reason="processing_crash",
                tool=e.tool,
                returncode=e.returncode,
            )
            return await self._skip(
                album_token, item_id, "processing_crash", tool=e.tool, returncode=e.returncode
            )

        text = transcript.text.strip()
        if len(text) < self.min_transcript_chars:
            log.info("augmentation_skipped", reason="too_short_transcript", chars=len(text))
            return await self._skip(
                album_token, item_id, "too_short_transcript", transcriptChars=len(text)
            )

        report = assess_transcript(text, self.max_marker_density, self.min_meaningful_words)
        if not report.passed:
            log.info("augmentation_skipped", reason="low_quality", **report.diagnostics())
            return await self._skip(album_token, item_id, "low_quality", **report.diagnostics())

        summary = await self.summarizer.summarize(text, report.meaningful_words)
        if summary == INSUFFICIENT_CONTENT:
            log.info("augmentation_skipped", reason="insufficient_content")
            return await self._skip(
                album_token,
                item_id,
                "insufficient_content",
                meaningfulWords=report.meaningful_words,
            )

        log.info("augmentation_succeeded", words=len(transcript.word_timestamps))
        return await asyncio.to_thread(
            self.store.save_success,
            album_token,
            item_id,
            transcript=transcript.text,
            summary=summary,
            word_timestamps=transcript.word_timestamps,
            offsets=transcript.offsets,
        )

    async def _skip(
        self, album_token: str, item_id: str, reason: str, **diagnostics: Any
    ) -> dict[str, Any]:
        return await asyncio.to_thread(
            self.store.save_skip, album_token, item_id, reason, **diagnostics
        )
