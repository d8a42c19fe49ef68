#!/usr/bin/env python
"""
CLI entry-point for the transmit side: watermark, chain, encrypt, live.
"""
from __future__ import annotations

import argparse
import logging
import sys
import time

import soundfile as sf

from pcmguard.audioio import SoundFileSource, read_all
from pcmguard.config import TunerParams, WatermarkConfig
from pcmguard.crypto import encrypt_source
from pcmguard.embedder import OwnershipEmbedder
from pcmguard.errors import PcmGuardError
from pcmguard.live import AudioLoop
from pcmguard.tuner import WatermarkTuner
from pcmguard.watermarker import embed_integrity, embed_ownership


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="pcmguard transmitter")
    p.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    w = sub.add_parser("watermark", help="embed an ownership watermark")
    w.add_argument("audio", help="input audio file")
    w.add_argument("output", help="output 32-bit float WAV")
    w.add_argument("--key", required=True, help="watermark secret")
    w.add_argument("--text", required=True, help="payload text")
    w.add_argument("--strength", type=float, default=0.05)
    w.add_argument("--spread", type=int, default=4096, help="chips per bit")
    w.add_argument("--tune", action="store_true", help="auto-tune strength and spread")
    w.add_argument("--margin", action="store_true", help="pad the tuned strength for real-world playback")

    i = sub.add_parser("integrity", help="embed the fragile integrity chain")
    i.add_argument("audio")
    i.add_argument("output")
    i.add_argument("--key", default="integrity")
    i.add_argument("--block", type=int, default=8192, help="samples per block")

    e = sub.add_parser("encrypt", help="AES-256-CTR encrypt into a container")
    e.add_argument("audio")
    e.add_argument("output")
    e.add_argument("--key", required=True, help="256-bit hex key (64 hex chars) or path to keyfile")

    lv = sub.add_parser("live", help="watermark a live input stream")
    lv.add_argument("--key", required=True)
    lv.add_argument("--text", required=True)
    lv.add_argument("--strength", type=float, default=0.05)
    lv.add_argument("--spread", type=int, default=4096)
    lv.add_argument("--device", type=int, help="sounddevice index")
    lv.add_argument("--fs", type=int, default=48_000)
    lv.add_argument("--channels", type=int, default=1)
    lv.add_argument("--seconds", type=float, default=30.0, help="run duration")
    lv.add_argument("--save", help="store the first 10 s of output here")
    return p.parse_args(argv)


def load_key(path_or_hex: str) -> bytes:
    stripped = path_or_hex.strip()
    if len(stripped) == 64 and all(c in "0123456789abcdefABCDEF" for c in stripped):
        return bytes.fromhex(stripped)
    with open(stripped, "rb") as fh:
        return fh.read()


def cmd_watermark(args) -> int:
    with SoundFileSource(args.audio) as src:
        if args.tune:
            print("🔎 tuning watermark parameters …", file=sys.stderr)
            samples = read_all(src)
            cfg = WatermarkTuner(TunerParams(apply_safety_margin=args.margin)).tune(
                samples, src.channels, src.sample_rate, args.text, args.key
            )
            print(f"   spread={cfg.spread_factor} strength={cfg.strength:.3f}", file=sys.stderr)
        else:
            cfg = WatermarkConfig(args.key, strength=args.strength, spread_factor=args.spread)
        with open(args.output, "wb") as out:
            res = embed_ownership(src, out, args.text, cfg)
    if not res.ok:
        print(f"❌  {res.error}", file=sys.stderr)
        return 1
    print(f"✅  watermarked {res.value} frames → {args.output}")
    return 0


def cmd_integrity(args) -> int:
    cfg = WatermarkConfig(args.key, integrity_block_size=args.block)
    with SoundFileSource(args.audio) as src, open(args.output, "wb") as out:
        res = embed_integrity(src, out, cfg)
    print(f"✅  integrity chain over {res.value} frames → {args.output}")
    return 0


def cmd_encrypt(args) -> int:
    key = load_key(args.key)
    with SoundFileSource(args.audio) as src, open(args.output, "wb") as out:
        res = encrypt_source(src, out, key)
    print(f"🔒  encrypted {res.value} frames → {args.output}")
    return 0


def cmd_live(args) -> int:
    cfg = WatermarkConfig(args.key, strength=args.strength, spread_factor=args.spread)
    embedder = OwnershipEmbedder.from_text(cfg, args.text)
    loop = AudioLoop(embedder.process, fs=args.fs, device=args.device,
                     channels=args.channels, save_path=args.save)
    loop.start()
    print("▶ live watermarking – speak into mic …", file=sys.stderr)
    try:
        time.sleep(args.seconds)
    finally:
        loop.stop()
    state = "complete" if embedder.complete else f"{embedder.frame_ctr}/{embedder.required_frames} frames"
    print(f"⏹  payload {state}", file=sys.stderr)
    return 0


COMMANDS = {
    "watermark": cmd_watermark,
    "integrity": cmd_integrity,
    "encrypt": cmd_encrypt,
    "live": cmd_live,
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
