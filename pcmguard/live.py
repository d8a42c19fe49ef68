"""
sounddevice wrapper – full duplex, any channel count, optional capture to disk.
"""

from __future__ import annotations

import logging
from typing import Callable

import numpy as np
import soundfile as sf

log = logging.getLogger(__name__)

ProcessFn = Callable[[np.ndarray, int], np.ndarray]


class AudioLoop:
    """
    Runs `process_fn(buffer, channels)` on every device block.

    The callback receives interleaved float32 samples and must return a
    buffer of the same size (in-place processing is fine). When
    `save_path` is set the first `save_seconds` of output are written there
    on :meth:`stop`.
    """

    def __init__(
        self,
        process_fn: ProcessFn,
        *,
        fs: int = 48_000,
        device: int | str | None = None,
        block: int = 1_024,
        channels: int = 1,
        save_path: str | None = None,
        save_seconds: float = 10.0,
    ) -> None:
        self.process = process_fn
        self.fs = fs
        self.device = device
        self.block = block
        self.channels = channels
        self.save_path = save_path
        self._stream = None
        self._output_buffer: list[np.ndarray] = []
        self._save_limit = int(fs * save_seconds)
        self._frames_to_save = self._save_limit if save_path else 0
        self.xruns = 0

    # --------------------------------------------------------------------- run
    def start(self) -> None:
        if self._stream:
            return
        import sounddevice as sd  # needs PortAudio; only load for a real device

        self._stream = sd.Stream(
            samplerate=self.fs,
            channels=self.channels,
            blocksize=self.block,
            dtype="float32",
            device=self.device,
            callback=self._callback,
        )
        self._stream.start()
        log.info("[LIVE] started: %d Hz, %d ch, block %d", self.fs, self.channels, self.block)

    def stop(self) -> None:
        if self._stream:
            self._stream.close()
            self._stream = None
        self._maybe_save()

    def __enter__(self) -> "AudioLoop":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()

    # --------------------------------------------------------------------- callback
    def _callback(self, indata, outdata, frames, _time, status):
        if status:
            self.xruns += 1
            log.warning("[LIVE] %s", status)
        buffer = np.array(indata, dtype=np.float32).reshape(-1)  # indata is owned by PortAudio
        output = self.process(buffer, self.channels)

        if self._frames_to_save > 0:
            self._output_buffer.append(output.reshape(frames, self.channels).copy())
            self._frames_to_save -= frames

        outdata[:] = output.reshape(frames, self.channels)

    def _maybe_save(self) -> None:
        if self.save_path and self._output_buffer:
            audio = np.concatenate(self._output_buffer)[:self._save_limit]
            sf.write(self.save_path, audio, self.fs, subtype="FLOAT")
            log.info("[LIVE] saved %.1f s to %s", audio.shape[0] / self.fs, self.save_path)
            self._output_buffer.clear()
