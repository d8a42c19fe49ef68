"""
Ownership watermark extractor: sync acquisition, despreading and payload checks.
"""
from __future__ import annotations

import logging

import numpy as np
from scipy.signal import correlate, lfilter

from pcmguard import bitcodec
from pcmguard.bitcodec import CRC_BITS, HEADER_BITS, LENGTH_BITS, SYNC_BITS, SYNC_PATTERN
from pcmguard.config import WatermarkConfig
from pcmguard.errors import ErrorKind, Result
from pcmguard.utils import ChipStream, seed_from_key

log = logging.getLogger(__name__)

PREWHITEN = 0.95          # first-order [1, -a] filter applied to audio and chips
SYNC_MAD_FACTOR = 4.5     # peak must clear median + k·1.4826·MAD
SYNC_MIN_MATCHES = 15     # of 16 sync bits
SYNC_MIN_LAGS = 32        # fewer lags → skip the outlier test
EPS = 1e-12


class OwnershipExtractor:
    """
    Recovers the payload written by :class:`~pcmguard.embedder.OwnershipEmbedder`.

    Feed the stream through :meth:`process` in the order it was embedded and
    call :meth:`finish` at end of stream. A :class:`Result` is returned exactly
    once: the decoded text, or a NOT_DETECTED / CHECKSUM_MISMATCH failure.
    """

    def __init__(
        self,
        config: WatermarkConfig,
        *,
        sync_search_frames: int | None = None,
        prewhiten: bool = True,
        chips: np.ndarray | None = None,
    ) -> None:
        self.cfg = config
        self.sf = config.spread_factor
        self.max_lag = self.sf if sync_search_frames is None else int(sync_search_frames)
        self._a = PREWHITEN if prewhiten else 0.0
        self._stream = ChipStream(seed_from_key(config.key), chips)
        self._chips = np.empty(0, dtype=np.float64)
        self._zi = np.zeros(1)

        self._parts: list[np.ndarray] = []
        self._y = np.empty(0, dtype=np.float64)
        self.frames_seen = 0

        self.sync_offset: int | None = None
        self._bits: list[int] = []
        self._crc = 0
        self._length: int | None = None
        self._reported = False

    # ------------------------------------------------------------------ API
    @property
    def done(self) -> bool:
        return self._reported

    def process(self, buffer: np.ndarray, channels: int) -> Result[str] | None:
        if self._reported:
            return None
        frames = buffer.size // channels
        if frames == 0:
            return None
        mono = np.asarray(buffer[:frames * channels], dtype=np.float64)
        if channels > 1:
            mono = mono.reshape(frames, channels).sum(axis=1)
        y, self._zi = lfilter([1.0, -self._a], [1.0], mono, zi=self._zi)
        self._parts.append(y)
        self.frames_seen += frames
        return self._advance(final=False)

    def finish(self) -> Result[str] | None:
        """Report the outcome at end of stream (None if already reported)."""
        if self._reported:
            return None
        res = self._advance(final=True)
        if res is None:
            res = self._report(Result.fail(
                ErrorKind.NOT_DETECTED,
                "stream ended before the watermark payload was complete",
            ))
        return res

    # ------------------------------------------------------------------ internals
    def _advance(self, *, final: bool) -> Result[str] | None:
        if self.sync_offset is None:
            res = self._try_sync(final)
            if res is not None or self.sync_offset is None:
                return res
        return self._decode_available()

    def _report(self, res: Result[str]) -> Result[str]:
        self._reported = True
        self._parts.clear()
        self._y = np.empty(0)
        if res.ok:
            log.info("[EXTRACT] payload recovered (%d data bits)", self._length or 0)
        else:
            log.info("[EXTRACT] %s", res.error)
        return res

    def _buffer(self) -> np.ndarray:
        if self._parts:
            self._y = np.concatenate([self._y, *self._parts])
            self._parts.clear()
        return self._y

    def _ref_chips(self, start: int, stop: int) -> np.ndarray:
        """Pre-whitened chips [start, stop) of the key's sequence."""
        if stop > self._chips.size:
            more = self._stream.take(stop - self._chips.size).astype(np.float64)
            self._chips = np.concatenate((self._chips, more))
        c = self._chips[start:stop]
        prev = np.empty_like(c)
        prev[1:] = c[:-1]
        prev[0] = self._chips[start - 1] if start > 0 else 0.0
        return c - self._a * prev

    # ------------------------------------------------------------------ sync
    def _try_sync(self, final: bool) -> Result[str] | None:
        sync_len = SYNC_BITS * self.sf
        y = self._buffer()
        if y.size < sync_len + self.max_lag and not final:
            return None
        if y.size < sync_len:
            return self._report(Result.fail(ErrorKind.NOT_DETECTED, "audio shorter than sync word"))

        ref = self._ref_chips(0, sync_len) * np.repeat(2.0 * SYNC_PATTERN - 1.0, self.sf)
        n_lags = min(self.max_lag, y.size - sync_len) + 1
        window = y[:sync_len + n_lags - 1]

        corr = correlate(window, ref, mode="valid", method="auto")
        csum = np.concatenate(([0.0], np.cumsum(window * window)))
        energy = np.maximum(csum[sync_len:] - csum[:-sync_len], 0.0)
        ncc = corr / (np.sqrt(energy * float(ref @ ref)) + EPS)

        lag = int(np.argmax(ncc))
        peak = float(ncc[lag])
        if ncc.size >= SYNC_MIN_LAGS:
            med = float(np.median(ncc))
            mad = float(np.median(np.abs(ncc - med))) + EPS
            thr = med + SYNC_MAD_FACTOR * 1.4826 * mad
            if peak < thr:
                log.debug("[EXTRACT] sync peak %.4f below threshold %.4f", peak, thr)
                return self._report(Result.fail(ErrorKind.NOT_DETECTED, "no sync peak found"))
        if peak <= 0.0:
            return self._report(Result.fail(ErrorKind.NOT_DETECTED, "no sync correlation"))

        bits = self._despread(window[lag:lag + sync_len], 0, SYNC_BITS)
        matches = int(np.sum(bits == SYNC_PATTERN))
        if matches < SYNC_MIN_MATCHES:
            log.debug("[EXTRACT] lag %d: only %d/16 sync bits", lag, matches)
            return self._report(Result.fail(ErrorKind.NOT_DETECTED, "sync pattern mismatch"))

        self.sync_offset = lag
        # drop everything before the first header bit
        self._y = y[lag + sync_len:]
        log.info("[EXTRACT] sync locked at frame %d (ncc=%.3f, %d/16 bits)", lag, peak, matches)
        return None

    # ------------------------------------------------------------------ data
    def _despread(self, seg: np.ndarray, first_bit: int, n_bits: int) -> np.ndarray:
        ref = self._ref_chips(first_bit * self.sf, (first_bit + n_bits) * self.sf)
        sums = (seg[:n_bits * self.sf] * ref).reshape(n_bits, self.sf).sum(axis=1)
        return (sums > 0.0).astype(np.uint8)

    def _decode_available(self) -> Result[str] | None:
        y = self._buffer()
        have = y.size // self.sf
        target = CRC_BITS + LENGTH_BITS if self._length is None else CRC_BITS + LENGTH_BITS + self._length
        n = min(have, target - len(self._bits))
        if n > 0:
            first = SYNC_BITS + len(self._bits)
            self._bits.extend(self._despread(y, first, n).tolist())
            self._y = y[n * self.sf:]

        if self._length is None and len(self._bits) >= CRC_BITS + LENGTH_BITS:
            header = bitcodec.parse_header(np.array(self._bits[:CRC_BITS + LENGTH_BITS]))
            if not header.ok:
                return self._report(Result(error=header.error))
            self._crc, self._length = header.value  # type: ignore[misc]
            log.debug("[EXTRACT] header: %d data bits", self._length)
            return self._decode_available()

        if self._length is not None and len(self._bits) >= CRC_BITS + LENGTH_BITS + self._length:
            data = np.array(self._bits[CRC_BITS + LENGTH_BITS:], dtype=np.uint8)
            return self._report(bitcodec.decode_text(self._crc, data))
        return None

    @property
    def payload_frames(self) -> int | None:
        """Total frames of the embedded payload once its length is known."""
        if self._length is None:
            return None
        return (HEADER_BITS + self._length) * self.sf
