"""
Sample sources and sinks used by the codecs.

Codecs never do I/O themselves; they get interleaved float32 buffers from a
:class:`SampleSource` and hand results to a sink such as :class:`FloatWavWriter`.
"""

from __future__ import annotations

import struct
from typing import BinaryIO, Iterator, Protocol

import numpy as np
import soundfile as sf


class SampleSource(Protocol):
    channels: int
    sample_rate: int
    frames: int | None       # total length when known
    seekable: bool

    def read(self, buffer: np.ndarray) -> int:
        """Fill `buffer` with interleaved samples; returns frames read (0 = end)."""
        ...

    def seek(self, frame: int) -> None:
        ...


class ArraySource:
    """In-memory source over a (frames,) or (frames, channels) array."""

    def __init__(self, audio: np.ndarray, sample_rate: int, channels: int | None = None) -> None:
        a = np.asarray(audio, dtype=np.float32)
        if a.ndim == 2:
            channels = a.shape[1]
        self.channels = channels or 1
        self._data = np.ascontiguousarray(a.reshape(-1))
        self.sample_rate = sample_rate
        self.frames: int | None = self._data.size // self.channels
        self.seekable = True
        self._pos = 0

    def read(self, buffer: np.ndarray) -> int:
        n = min(buffer.size // self.channels * self.channels, self._data.size - self._pos)
        buffer[:n] = self._data[self._pos:self._pos + n]
        self._pos += n
        return n // self.channels

    def seek(self, frame: int) -> None:
        self._pos = min(max(0, frame) * self.channels, self._data.size)


class SoundFileSource:
    """Any format libsndfile can decode, read as float32."""

    def __init__(self, path: str) -> None:
        self._f = sf.SoundFile(path)
        self.channels = self._f.channels
        self.sample_rate = self._f.samplerate
        self.frames: int | None = self._f.frames
        self.seekable = self._f.seekable()

    def read(self, buffer: np.ndarray) -> int:
        frames = buffer.size // self.channels
        data = self._f.read(frames, dtype="float32", always_2d=True)
        n = data.shape[0]
        buffer[:n * self.channels] = data.reshape(-1)
        return n

    def seek(self, frame: int) -> None:
        self._f.seek(frame)

    def close(self) -> None:
        self._f.close()

    def __enter__(self) -> "SoundFileSource":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def read_chunks(source: SampleSource, chunk_frames: int = 4096) -> Iterator[np.ndarray]:
    """Yield fresh interleaved float32 chunks until the source is exhausted."""
    buf = np.empty(chunk_frames * source.channels, dtype=np.float32)
    while True:
        n = source.read(buf)
        if n == 0:
            return
        yield buf[:n * source.channels].copy()


def read_all(source: SampleSource) -> np.ndarray:
    parts = list(read_chunks(source, 65_536))
    if not parts:
        return np.empty(0, dtype=np.float32)
    return np.concatenate(parts)


# ───────────────────────────── float WAV sink ────────────────────────────
WAV_HEADER_SIZE = 44
WAVE_FORMAT_IEEE_FLOAT = 3
_WAV = struct.Struct("<4sI4s4sIHHIIHH4sI")


def wav_header(channels: int, sample_rate: int, data_bytes: int) -> bytes:
    block_align = channels * 4
    return _WAV.pack(
        b"RIFF", 36 + data_bytes, b"WAVE",
        b"fmt ", 16, WAVE_FORMAT_IEEE_FLOAT, channels, sample_rate,
        sample_rate * block_align, block_align, 32,
        b"data", data_bytes,
    )


class FloatWavWriter:
    """
    Minimal 32-bit float WAV writer.

    A placeholder header is written first; RIFF and data sizes are
    back-patched on :meth:`close`, so `stream` must be seekable.
    """

    def __init__(self, stream: BinaryIO, channels: int, sample_rate: int) -> None:
        if not stream.seekable():
            raise ValueError("FloatWavWriter needs a seekable destination")
        self._stream = stream
        self.channels = channels
        self.sample_rate = sample_rate
        self._start = stream.tell()
        self.data_bytes = 0
        stream.write(wav_header(channels, sample_rate, 0))

    def write(self, samples: np.ndarray) -> None:
        raw = np.asarray(samples, dtype="<f4").tobytes()
        self._stream.write(raw)
        self.data_bytes += len(raw)

    def close(self) -> None:
        end = self._stream.tell()
        self._stream.seek(self._start)
        self._stream.write(wav_header(self.channels, self.sample_rate, self.data_bytes))
        self._stream.seek(end)
        self._stream.flush()

    def __enter__(self) -> "FloatWavWriter":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def write_float_wav(path: str, samples: np.ndarray, channels: int, sample_rate: int) -> None:
    with open(path, "wb") as fh, FloatWavWriter(fh, channels, sample_rate) as w:
        w.write(samples)
