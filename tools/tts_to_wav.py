# tools/tts_to_wav.py
"""
Stream text to a Kyutai TTS server and save the synthesized audio.

Words are sent at a fixed rate to mimic an LLM producing tokens.

    python tools/tts_to_wav.py --input "Hello there" --output hello.wav
    echo "Hello there" | python tools/tts_to_wav.py --output -  > hello.f32
"""
from __future__ import annotations

import argparse
import dataclasses
import asyncio
import sys
from typing import AsyncIterator

import numpy as np
import soundfile as sf

from adapters.kyutai_tts import TTSClient
from config import ClientConfig
from constants import SAMPLE_RATE_HZ
from observability import logger
from protocol.messages import Audio, Text
from session.tts import TTSConnection


async def _words(source: str) -> AsyncIterator[str]:
    if source != "-":
        for word in source.split():
            yield word
        return
    while True:
        # readline blocks; keep it off the event loop
        line = await asyncio.to_thread(sys.stdin.readline)
        if not line:
            return
        for word in line.split():
            yield word


async def _send_words(conn: TTSConnection, source: str, words_per_second: float) -> None:
    delay_s = 1.0 / words_per_second
    async for word in _words(source):
        await conn.submit(word)
        await asyncio.sleep(delay_s)
    await conn.finish()


async def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--server", default=None, help="Server base URL (default: KYUTAI_URL)")
    ap.add_argument("--voice", default=None, help="Voice id (default: KYUTAI_TTS_VOICE)")
    ap.add_argument("--input", default="-", help="Text to synthesize. Use - for stdin.")
    ap.add_argument("--wordspersecond", type=float, default=5.0, help="Word sending rate.")
    ap.add_argument("--output", default="output.wav", help="WAV file, or - for raw f32le on stdout.")
    args = ap.parse_args()

    if args.output != "-" and not args.output.endswith(".wav"):
        print("[tts] output file must use a .wav extension", file=sys.stderr)
        return 1
    if args.wordspersecond <= 0:
        print("[tts] --wordspersecond must be > 0", file=sys.stderr)
        return 1

    config = ClientConfig.load_from_env()
    overrides = {}
    if args.server:
        overrides["url"] = args.server
    if args.voice:
        overrides["voice"] = args.voice
    if overrides:
        config = dataclasses.replace(config, **overrides)

    if args.output == "-":
        # stdout carries audio
        logger.set_stream(sys.stderr)

    client = TTSClient(config)
    print(f"[tts] connecting to {client.url}", file=sys.stderr)

    chunks: list[np.ndarray] = []
    async with await client.connect() as conn:
        sender = asyncio.create_task(_send_words(conn, args.input, args.wordspersecond))

        async for event in conn.results():
            if isinstance(event, Text):
                print(event.text, end=" ", file=sys.stderr, flush=True)
            elif isinstance(event, Audio):
                if args.output == "-":
                    sys.stdout.buffer.write(event.pcm.astype("<f4").tobytes())
                else:
                    chunks.append(event.pcm)

        await sender

    print(file=sys.stderr)

    if args.output != "-":
        audio = np.concatenate(chunks) if chunks else np.zeros(0, dtype=np.float32)
        sf.write(args.output, audio, SAMPLE_RATE_HZ, subtype="PCM_16")
        print(
            f"[tts] wrote {len(audio) / SAMPLE_RATE_HZ:.2f}s of audio to {args.output}",
            file=sys.stderr,
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
