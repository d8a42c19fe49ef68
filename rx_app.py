#!/usr/bin/env python
"""
CLI receiver – extract, verify, decrypt or identify an audio file.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import soundfile as sf

from pcmguard.audioio import SoundFileSource, read_all, write_float_wav
from pcmguard.config import FingerprintParams, WatermarkConfig
from pcmguard.crypto import open_encrypted
from pcmguard.errors import PcmGuardError
from pcmguard.fingerprint import AudioIdentifier
from pcmguard.store import SqliteFingerprintStore
from pcmguard.watermarker import extract_ownership, verify_integrity


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="pcmguard receiver")
    p.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    x = sub.add_parser("extract", help="recover an ownership watermark")
    x.add_argument("audio", help="audio file to check")
    x.add_argument("--key", required=True)
    x.add_argument("--spread", type=int, default=4096, help="chips per bit")

    v = sub.add_parser("verify", help="check the integrity chain")
    v.add_argument("audio")
    v.add_argument("--key", default="integrity")
    v.add_argument("--block", type=int, default=8192)
    v.add_argument("--first", action="store_true", help="stop at the first violation")

    d = sub.add_parser("decrypt", help="decrypt a pcmguard container to WAV")
    d.add_argument("container")
    d.add_argument("output")
    d.add_argument("--key", required=True, help="256-bit hex key (64 hex chars) or path to keyfile")
    d.add_argument("--start", type=float, default=0.0, help="seconds to skip")

    i = sub.add_parser("identify", help="fingerprint lookup")
    i.add_argument("audio", nargs="+", help="query file (or files to index with --add)")
    i.add_argument("--db", required=True, help="SQLite fingerprint database")
    i.add_argument("--add", action="store_true", help="index the files instead of querying")
    return p.parse_args(argv)


def load_key(path_or_hex: str) -> bytes:
    stripped = path_or_hex.strip()
    if len(stripped) == 64 and all(c in "0123456789abcdefABCDEF" for c in stripped):
        return bytes.fromhex(stripped)
    with open(stripped, "rb") as fh:
        return fh.read()


def cmd_extract(args) -> int:
    cfg = WatermarkConfig(args.key, spread_factor=args.spread)
    with SoundFileSource(args.audio) as src:
        res = extract_ownership(src, cfg)
    if not res.ok:
        print(f"⚠️  no watermark: {res.error}")
        return 1
    print(f"✅  payload: {res.value}")
    return 0


def cmd_verify(args) -> int:
    cfg = WatermarkConfig(args.key, integrity_block_size=args.block)
    with SoundFileSource(args.audio) as src:
        report = verify_integrity(src, cfg, stop_at_first=args.first)
    if report.intact:
        print(f"✅  authentic ({report.blocks_checked} blocks checked)")
        return 0
    blocks = ", ".join(str(v.block_index) for v in report.violations)
    print(f"⚠️  tampered: chain broken at block(s) {blocks}")
    return 1


def cmd_decrypt(args) -> int:
    key = load_key(args.key)
    fh = open(args.container, "rb")
    res = open_encrypted(fh, key)
    if not res.ok:
        fh.close()
        print(f"❌  {res.error}", file=sys.stderr)
        return 1
    src = res.value
    try:
        if args.start > 0:
            src.seek(int(args.start * src.sample_rate))
        samples = read_all(src)
    finally:
        src.close()
    write_float_wav(args.output, samples, src.channels, src.sample_rate)
    print(f"🔓  decrypted {samples.size // src.channels} frames → {args.output}")
    return 0


async def _identify(args) -> int:
    store = SqliteFingerprintStore(args.db)
    ident = AudioIdentifier(store, FingerprintParams())
    if args.add:
        for path in args.audio:
            data, fs = sf.read(path, dtype="float32", always_2d=True)
            fp = await ident.register(path, data.reshape(-1), data.shape[1], fs)
            print(f"➕  {path}: {len(fp.hashes)} hashes")
        return 0
    with SoundFileSource(args.audio[0]) as src:
        res = await ident.identify_source(src)
    if not res.ok:
        print(f"⚠️  {res.error}")
        return 1
    m = res.value
    print(f"🎵  {m.track_id} @ {m.match_time_seconds:.2f}s "
          f"(confidence {m.confidence}, {m.processing_time * 1000:.0f} ms)")
    return 0


def cmd_identify(args) -> int:
    return asyncio.run(_identify(args))


COMMANDS = {
    "extract": cmd_extract,
    "verify": cmd_verify,
    "decrypt": cmd_decrypt,
    "identify": cmd_identify,
}


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return COMMANDS[args.cmd](args)
    except (PcmGuardError, sf.LibsndfileError, OSError) as exc:
        raise SystemExit(f"❌  {exc}")


if __name__ == "__main__":
    sys.exit(main())
