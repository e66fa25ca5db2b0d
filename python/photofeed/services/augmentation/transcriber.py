"""Speech-to-text via the whisper.cpp CLI."""

from pathlib import Path

from photofeed.logging import get_logger
from photofeed.services.augmentation.media import check_tool_result, run_tool
from photofeed.services.augmentation.transcript import Transcript, parse_transcript_lines

logger = get_logger(__name__)


class WhisperCppTranscriber:
    """Runs whisper.cpp with one word per segment and parses its output.

    Args:
        binary: whisper.cpp CLI executable.
        model_path: ggml model file.
        timeout_s: Transcription limit; the process is killed past it.
        threads: Worker threads handed to whisper.cpp.
    """

    def __init__(self, binary: str, model_path: str, timeout_s: float, threads: int = 4):
        self.binary = binary
        self.model_path = model_path
        self.timeout_s = timeout_s
        self.threads = threads

    def build_command(self, audio_file: Path) -> list[str]:
        return [
            self.binary,
            "-m",
            self.model_path,
            "-f",
            str(audio_file),
            "-ml",
            "1",
            "-t",
            str(self.threads),
            "-np",
        ]

    async def transcribe(self, audio_file: Path) -> Transcript:
        result = await run_tool(
            self.build_command(audio_file), timeout_s=self.timeout_s, stage="transcribe"
        )
        check_tool_result("whisper", result)

        transcript = parse_transcript_lines(
            result.stdout.decode("utf-8", errors="replace").splitlines()
        )
        logger.info(
            "transcription_completed",
            words=len(transcript.word_timestamps),
            chars=len(transcript.text),
        )
        return transcript
