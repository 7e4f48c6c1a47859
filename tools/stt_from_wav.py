# tools/stt_from_wav.py
"""
Stream a WAV file to a Kyutai STT server in real time and print the
transcript plus marker round-trip latency.

    python tools/stt_from_wav.py --wav speech.wav
    cat speech.wav | python tools/stt_from_wav.py --wav -
"""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import io
import sys
import time

import soundfile as sf

from adapters.kyutai_stt import STTClient
from audio.resample import to_model_rate
from config import ClientConfig
from constants import SAMPLE_RATE_HZ
from observability import logger
from protocol.messages import Marker, Step, Word
from session.stt import STTConnection

CHUNK_SAMPLES = SAMPLE_RATE_HZ // 10   # 100ms
REALTIME_SLEEP_S = 0.100


def _read_audio(source: str):
    """Read a WAV from a path, or from stdin when source is '-'."""
    # pipes cannot seek; buffer stdin whole
    target = io.BytesIO(sys.stdin.buffer.read()) if source == "-" else source
    return sf.read(target, dtype="float32", always_2d=True)


async def _feed(
    conn: STTConnection,
    samples,
    sent_at: dict[int, float],
    realtime: bool,
) -> None:
    for start in range(0, len(samples), CHUNK_SAMPLES):
        await conn.submit(samples[start : start + CHUNK_SAMPLES])
        marker_id = await conn.send_marker()
        sent_at[marker_id] = time.monotonic()
        if realtime:
            await asyncio.sleep(REALTIME_SLEEP_S)
    await conn.finish()
    print("[stt] audio fully sent", file=sys.stderr)


async def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument(
        "--wav",
        default="audio.wav",
        help="Any WAV file (resampled to 24kHz mono). Use - for stdin.",
    )
    ap.add_argument("--server", default=None, help="Server base URL (default: KYUTAI_URL)")
    ap.add_argument("--no-realtime", action="store_true", help="Send audio as fast as possible.")
    args = ap.parse_args()

    data, sr = _read_audio(args.wav)
    samples = to_model_rate(data, sr)
    print(
        f"[stt] {args.wav}: {len(samples) / SAMPLE_RATE_HZ:.2f}s "
        f"({len(samples)} samples @{SAMPLE_RATE_HZ}Hz, source {sr}Hz)",
        file=sys.stderr,
    )

    config = ClientConfig.load_from_env()
    if args.server:
        config = dataclasses.replace(config, url=args.server)

    # stdout is reserved for the transcript
    logger.set_stream(sys.stderr)

    sent_at: dict[int, float] = {}
    latencies_ms: list[float] = []
    words: list[str] = []
    steps = 0

    async with await STTClient(config).connect() as conn:
        feeder = asyncio.create_task(
            _feed(conn, samples, sent_at, realtime=not args.no_realtime)
        )

        async for event in conn.results():
            if isinstance(event, Word):
                words.append(event.text)
                print(f"[{event.start}] {event.text}", file=sys.stderr)
            elif isinstance(event, Marker):
                t0 = sent_at.pop(event.id, None)
                if t0 is not None:
                    latencies_ms.append((time.monotonic() - t0) * 1000)
            elif isinstance(event, Step):
                steps = event.step_idx

        await feeder

    if latencies_ms:
        avg = sum(latencies_ms) / len(latencies_ms)
        print(f"[stt] average marker latency: {avg:.0f}ms", file=sys.stderr)
    print(f"[stt] server steps: {steps}", file=sys.stderr)
    print(" ".join(words))
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
