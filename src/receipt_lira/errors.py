"""Exception types raised inside the extraction pipeline."""

from __future__ import annotations


class ExtractionFailure(RuntimeError):
    """The vision strategy could not produce a usable structured result.

    ``raw_text`` carries whatever text the provider did return so the
    pattern fallback can still run against it.
    """

    def __init__(
        self, message: str, code: str = "extraction_failed", raw_text: str = ""
    ) -> None:
        super().__init__(message)
        self.code = code
        self.raw_text = raw_text
