"""
File-level helpers: stream a :class:`SampleSource` through one codec and
write the result as a 32-bit float WAV.
"""
from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from typing import BinaryIO

from pcmguard import bitcodec
from pcmguard.audioio import WAV_HEADER_SIZE, FloatWavWriter, SampleSource, read_chunks
from pcmguard.config import WatermarkConfig
from pcmguard.detector import OwnershipExtractor
from pcmguard.embedder import OwnershipEmbedder
from pcmguard.errors import ErrorKind, Failure, Result
from pcmguard.integrity import IntegrityEmbedder, IntegrityVerifier, IntegrityViolation

log = logging.getLogger(__name__)

CHUNK_FRAMES = 8192


def _rewind(source: SampleSource) -> None:
    if source.seekable:
        source.seek(0)


# ------------------------------------------------------------------ ownership
def embed_ownership(
    source: SampleSource,
    destination: BinaryIO,
    text: str,
    config: WatermarkConfig,
) -> Result[int]:
    """Watermark the whole source into `destination`; returns frames written."""
    try:
        bits = bitcodec.encode_text(text)
    except ValueError as exc:
        return Result.fail(ErrorKind.PAYLOAD_TOO_LARGE, str(exc))
    embedder = OwnershipEmbedder(config, bits)
    if source.frames is not None and source.frames < embedder.required_frames:
        return Result.fail(
            ErrorKind.PAYLOAD_TOO_LARGE,
            f"payload needs {embedder.required_frames} frames, source has {source.frames}",
        )

    _rewind(source)
    frames = 0
    with FloatWavWriter(destination, source.channels, source.sample_rate) as out:
        for chunk in read_chunks(source, CHUNK_FRAMES):
            out.write(embedder.process(chunk, source.channels))
            frames += chunk.size // source.channels
    if not embedder.complete:
        return Result.fail(
            ErrorKind.PAYLOAD_TOO_LARGE,
            f"stream ended after {frames} of {embedder.required_frames} frames",
        )
    return Result.success(frames)


def extract_ownership(source: SampleSource, config: WatermarkConfig) -> Result[str]:
    extractor = OwnershipExtractor(config)
    _rewind(source)
    for chunk in read_chunks(source, CHUNK_FRAMES):
        res = extractor.process(chunk, source.channels)
        if res is not None:
            return res
    return extractor.finish()  # type: ignore[return-value]


# ------------------------------------------------------------------ integrity
@dataclass(slots=True)
class IntegrityReport:
    blocks_checked: int = 0
    violations: list[IntegrityViolation] = field(default_factory=list)

    @property
    def intact(self) -> bool:
        return not self.violations

    @property
    def failure(self) -> Failure | None:
        """The first violation as a :class:`Failure`, or None when intact."""
        if self.intact:
            return None
        v = self.violations[0]
        return Failure(ErrorKind.INTEGRITY_VIOLATION,
                       f"hash chain broken at block {v.block_index}", v.block_index)


def embed_integrity(
    source: SampleSource, destination: BinaryIO, config: WatermarkConfig
) -> Result[int]:
    embedder = IntegrityEmbedder(config)
    _rewind(source)
    frames = 0
    with FloatWavWriter(destination, source.channels, source.sample_rate) as out:
        for chunk in read_chunks(source, CHUNK_FRAMES):
            out.write(embedder.process(chunk, source.channels))
            frames += chunk.size // source.channels
    log.info("[INTEGRITY] %d blocks chained", embedder.block_counter)
    return Result.success(frames)


def verify_integrity(
    source: SampleSource, config: WatermarkConfig, *, stop_at_first: bool = False
) -> IntegrityReport:
    verifier = IntegrityVerifier(config, stop_at_first=stop_at_first)
    _rewind(source)
    for chunk in read_chunks(source, CHUNK_FRAMES):
        verifier.process(chunk, source.channels)
        if verifier.halted:
            break
    return IntegrityReport(verifier.blocks_checked, list(verifier.violations))


def tamper_bytes(src_path: str, dst_path: str, length: int = 1024) -> int:
    """
    Copy a WAV file, zeroing `length` bytes in the middle of its data chunk.

    Returns the absolute offset of the first zeroed byte, or -1 when the file
    holds no data to damage (it is copied unchanged).
    """
    with open(src_path, "rb") as fh:
        data = bytearray(fh.read())
    if len(data) <= WAV_HEADER_SIZE:
        shutil.copyfile(src_path, dst_path)
        log.warning("[TAMPER] %s too small, copied as-is", src_path)
        return -1
    point = WAV_HEADER_SIZE + (len(data) - WAV_HEADER_SIZE) // 2
    end = min(point + length, len(data))
    data[point:end] = bytes(end - point)
    with open(dst_path, "wb") as fh:
        fh.write(data)
    log.info("[TAMPER] zeroed bytes %d..%d", point, end)
    return point
