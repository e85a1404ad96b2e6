"""Decode agent output of unknown encoding into clean text."""

import codecs
import re

ANSI_CSI_RE = re.compile(r"\x1B\[[0-?]*[ -/]*[@-~]")
# Escape sequence cut off at the end of a chunk.
PARTIAL_CSI_RE = re.compile(r"\x1B(?:\[[0-?]*[ -/]*)?$")
LONE_CR_RE = re.compile(r"\r(?!\n)")

UTF16_SAMPLE_BYTES = 256
BOM_UTF16_LE = codecs.BOM_UTF16_LE
BOM_UTF16_BE = codecs.BOM_UTF16_BE


def looks_like_utf16(data: bytes) -> bool:
    """Heuristic UTF-16 detection.

    True for either byte-order mark, or when more than a sixth of the
    sampled length is zero bytes at odd offsets (ASCII text in UTF-16LE).
    """
    if data[:2] in (BOM_UTF16_LE, BOM_UTF16_BE):
        return True
    sample = min(len(data), UTF16_SAMPLE_BYTES)
    zero_count = sum(1 for i in range(1, sample, 2) if data[i] == 0)
    return zero_count > sample / 6


def detect_encoding(data: bytes) -> str:
    if data[:2] == BOM_UTF16_BE:
        return "utf-16-be"
    if looks_like_utf16(data):
        return "utf-16-le"
    return "utf-8"


def clean_text(text: str) -> str:
    """Strip CSI sequences and turn stray carriage returns into newlines."""
    text = ANSI_CSI_RE.sub("", text)
    return LONE_CR_RE.sub("\n", text)


def decode_chunk(data: bytes, raw: bool = False) -> str:
    """Decode a single chunk in isolation.

    Detection runs on this chunk alone, so a multi-byte character split
    across chunks may come out as replacement characters. ``StreamDecoder``
    carries state across chunks instead.
    """
    encoding = detect_encoding(data)
    if encoding != "utf-8" and data[:2] in (BOM_UTF16_LE, BOM_UTF16_BE):
        data = data[2:]
    text = data.decode(encoding, errors="replace")
    if raw:
        return text
    return clean_text(text)


class StreamDecoder:
    """Incremental decoder for one output stream.

    The encoding is detected on the first non-empty chunk and reused for the
    rest of the stream. Partial multi-byte sequences, a trailing incomplete
    escape sequence and a trailing lone CR are held back until more data
    arrives or the stream is flushed.
    """

    def __init__(self, raw: bool = False):
        self.raw = raw
        self.encoding: str | None = None
        self._decoder: codecs.IncrementalDecoder | None = None
        self._pending = ""

    def _ensure_decoder(self, data: bytes) -> bytes:
        if self._decoder is None:
            self.encoding = detect_encoding(data)
            self._decoder = codecs.getincrementaldecoder(self.encoding)(errors="replace")
            if self.encoding != "utf-8" and data[:2] in (BOM_UTF16_LE, BOM_UTF16_BE):
                data = data[2:]
        return data

    def decode(self, data: bytes) -> str:
        if not data:
            return ""
        data = self._ensure_decoder(data)
        text = self._decoder.decode(data)
        if self.raw:
            return text
        return self._clean(self._pending + text, final=False)

    def flush(self) -> str:
        """Return whatever is still buffered at end of stream."""
        if self._decoder is None:
            return ""
        text = self._decoder.decode(b"", final=True)
        if self.raw:
            return text
        return self._clean(self._pending + text, final=True)

    def _clean(self, text: str, final: bool) -> str:
        self._pending = ""
        if not final:
            partial = PARTIAL_CSI_RE.search(text)
            if partial:
                self._pending = text[partial.start():]
                text = text[: partial.start()]
            elif text.endswith("\r"):
                self._pending = "\r"
                text = text[:-1]
        return clean_text(text)
