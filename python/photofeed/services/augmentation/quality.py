"""Transcript quality gate.

Speech-to-text engines emit non-speech cues as bracketed tags, e.g.
"(background music)", "(wind blowing)", "[MUSIC]". A clip that is mostly
music or ambient noise produces a transcript dominated by such markers
and is not worth summarizing.

Measures:
- marker_count: number of bracketed tags
- meaningful_words: tokens longer than two characters, punctuation
  stripped, counted after marker text is removed
- marker_density: marker_count / (marker_count + meaningful_words)

A transcript fails when density exceeds the configured ceiling or the
meaningful word count is below the configured floor.
"""

import re
import string
from dataclasses import dataclass

MARKER_PATTERN = re.compile(r"\([^)]*\)|\[[^\]]*\]")

_PUNCTUATION = string.punctuation + "‘’“”…"


@dataclass(frozen=True)
class QualityReport:
    marker_count: int
    meaningful_words: int
    marker_density: float
    passed: bool

    def diagnostics(self) -> dict:
        return {
            "markerCount": self.marker_count,
            "meaningfulWords": self.meaningful_words,
            "markerDensity": round(self.marker_density, 3),
        }


def count_meaningful_words(text: str) -> int:
    """Count tokens longer than two characters once punctuation is stripped."""
    count = 0
    for token in text.split():
        if len(token.strip(_PUNCTUATION)) > 2:
            count += 1
    return count


def assess_transcript(
    text: str, max_marker_density: float, min_meaningful_words: int
) -> QualityReport:
    markers = MARKER_PATTERN.findall(text)
    meaningful = count_meaningful_words(MARKER_PATTERN.sub(" ", text))

    total = len(markers) + meaningful
    density = len(markers) / total if total else 0.0

    passed = density <= max_marker_density and meaningful >= min_meaningful_words
    return QualityReport(
        marker_count=len(markers),
        meaningful_words=meaningful,
        marker_density=density,
        passed=passed,
    )
