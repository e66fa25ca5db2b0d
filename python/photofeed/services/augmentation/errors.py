"""Augmentation pipeline failure taxonomy.

- TransientMediaError: retry on the next trigger; no record is written
  (expired signed link, network failure, timeout, tool misconfiguration)
- ProcessingCrashError: the media tool died on this input; recorded as a
  permanent skip with reason "processing_crash"
"""


class AugmentationError(Exception):
    """Base class for pipeline failures."""

    pass


class TransientMediaError(AugmentationError):
    """A recoverable failure that must not be cached."""

    pass


class LinkExpiredError(TransientMediaError):
    """The signed media URL was rejected by the upstream (expired or revoked).

    Attributes:
        status_code: The upstream HTTP status.
    """

    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"Media link rejected with status {status_code}")


class MediaTimeoutError(TransientMediaError):
    """A download or tool invocation exceeded its time limit."""

    def __init__(self, stage: str, timeout_s: float):
        self.stage = stage
        self.timeout_s = timeout_s
        super().__init__(f"{stage} timed out after {timeout_s}s")


class ProcessingCrashError(AugmentationError):
    """An external media tool crashed (signal or abort exit code).

    Attributes:
        tool: Tool name
        returncode: Process return code (negative for signals)
    """

    def __init__(self, tool: str, returncode: int, detail: str = ""):
        self.tool = tool
        self.returncode = returncode
        self.detail = detail
        super().__init__(f"{tool} crashed with return code {returncode}")
