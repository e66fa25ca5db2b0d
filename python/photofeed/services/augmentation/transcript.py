"""Parser for whisper.cpp segment output.

whisper.cpp run with one token per segment (-ml 1) prints lines like:

    [00:00:01.240 --> 00:00:01.600]   Hello
    [00:00:01.600 --> 00:00:01.900]   world.

parse_transcript_lines() turns those lines into the transcript text plus
two parallel lists: the start time of each word in milliseconds and the
character offset where that word begins in the text. Together they map a
character position to elapsed playback time.

Lines without a timestamp prefix (banners, progress, blank lines) are
ignored.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

SEGMENT_LINE = re.compile(
    r"^\s*\[(?P<start>\d{2}:\d{2}:\d{2}[.,]\d{3})\s*-->\s*"
    r"(?P<end>\d{2}:\d{2}:\d{2}[.,]\d{3})\]\s*(?P<text>.*)$"
)


@dataclass(frozen=True)
class Transcript:
    """Speech-to-text result.

    Attributes:
        text: Words joined by single spaces.
        word_timestamps: Start time of each word in milliseconds.
        offsets: Character offset of each word within text.
    """

    text: str
    word_timestamps: list[int] = field(default_factory=list)
    offsets: list[int] = field(default_factory=list)


def parse_timestamp_ms(value: str) -> int:
    """Convert HH:MM:SS.mmm (or HH:MM:SS,mmm) to milliseconds."""
    clock, millis = re.split(r"[.,]", value)
    hours, minutes, seconds = (int(part) for part in clock.split(":"))
    return ((hours * 60 + minutes) * 60 + seconds) * 1000 + int(millis)


def parse_transcript_lines(lines: Iterable[str]) -> Transcript:
    words: list[str] = []
    timestamps: list[int] = []
    offsets: list[int] = []
    position = 0

    for line in lines:
        match = SEGMENT_LINE.match(line)
        if match is None:
            continue
        word = match.group("text").strip()
        if not word:
            continue

        if words:
            position += 1  # joining space
        offsets.append(position)
        timestamps.append(parse_timestamp_ms(match.group("start")))
        words.append(word)
        position += len(word)

    return Transcript(text=" ".join(words), word_timestamps=timestamps, offsets=offsets)
