import io
import time
import wave
import asyncio
import logging

from google import genai
from google.genai import types

import studio_config

logger = logging.getLogger("GeminiClient")

CHAT_SYSTEM_PROMPT = (
    "You are a helpful, friendly, and knowledgeable AI assistant. Provide clear, accurate, "
    "and concise answers. Be engaging and maintain a natural conversational tone."
)

CODEGEN_SYSTEM_PROMPT = (
    "You are a helpful code generation assistant. Generate clean, production-ready code based "
    "on user requests. Output ONLY the code without explanations or markdown formatting. Include "
    "necessary imports and follow best practices for the language mentioned."
)

# Lyria realtime streams 16-bit PCM, 48kHz stereo
MUSIC_SAMPLE_RATE = 48000
MUSIC_CHANNELS = 2
MUSIC_SAMPLE_WIDTH = 2


class GeminiError(RuntimeError):
    pass


_client = None


def get_client():
    global _client
    if _client is None:
        if not studio_config.GEMINI_API_KEY:
            raise GeminiError("GEMINI_API_KEY is not configured")
        _client = genai.Client(api_key=studio_config.GEMINI_API_KEY)
    return _client


def _to_contents(history: list[dict]) -> list:
    return [
        types.Content(
            role="user" if m["role"] == "user" else "model",
            parts=[types.Part(text=m["content"])],
        )
        for m in history
    ]


def _generate(contents, config, op: str) -> str:
    model = studio_config.GEMINI_TEXT_MODEL
    started_at = time.time()
    try:
        response = get_client().models.generate_content(model=model, contents=contents, config=config)
    except GeminiError:
        raise
    except Exception as e:
        logger.error("REMOTE gemini %s error ms=%s err=%s", op, int((time.time() - started_at) * 1000), str(e))
        raise GeminiError(str(e)) from e
    logger.info("REMOTE gemini %s ok ms=%s model=%s", op, int((time.time() - started_at) * 1000), model)
    return (response.text or "").strip()


def chat_reply(history: list[dict], message: str) -> str:
    """Reply to `message` given earlier turns ({"role", "content"}, oldest first)."""
    contents = _to_contents(history + [{"role": "user", "content": message}])
    config = types.GenerateContentConfig(
        system_instruction=CHAT_SYSTEM_PROMPT,
        temperature=0.7,
        top_p=0.8,
        thinking_config=types.ThinkingConfig(thinking_budget=0),
    )
    return _generate(contents, config, "chat")


def generate_code(prompt: str) -> str:
    config = types.GenerateContentConfig(
        system_instruction=CODEGEN_SYSTEM_PROMPT,
        temperature=0.2,
        thinking_config=types.ThinkingConfig(thinking_budget=0),
    )
    return _generate(prompt, config, "codegen")


async def generate_music(prompt: str, seconds: float = 10, bpm: int = 90) -> bytes:
    """
    Stream `seconds` of Lyria realtime music for `prompt` and return the raw
    PCM. Raises GeminiError when nothing was received.
    """
    if not studio_config.GEMINI_API_KEY:
        raise GeminiError("GEMINI_API_KEY is not configured")
    client = genai.Client(
        api_key=studio_config.GEMINI_API_KEY,
        http_options={"api_version": "v1alpha"},
    )
    chunks: list[bytes] = []

    async def receive(session):
        async for message in session.receive():
            content = getattr(message, "server_content", None)
            for chunk in getattr(content, "audio_chunks", None) or []:
                if chunk.data:
                    chunks.append(chunk.data)

    started_at = time.time()
    receiver = None
    try:
        async with client.aio.live.music.connect(model=studio_config.GEMINI_MUSIC_MODEL) as session:
            receiver = asyncio.create_task(receive(session))
            await session.set_weighted_prompts(prompts=[types.WeightedPrompt(text=prompt, weight=1.0)])
            await session.set_music_generation_config(
                config=types.LiveMusicGenerationConfig(bpm=bpm, temperature=1.0)
            )
            await session.play()
            await asyncio.sleep(seconds)
            await session.stop()
    except Exception as e:
        logger.error("REMOTE gemini music error ms=%s err=%s", int((time.time() - started_at) * 1000), str(e))
        raise GeminiError(str(e)) from e
    finally:
        if receiver is not None and not receiver.done():
            receiver.cancel()
            try:
                await receiver
            except (asyncio.CancelledError, Exception):
                pass

    logger.info(
        "REMOTE gemini music ok ms=%s chunks=%s bytes=%s",
        int((time.time() - started_at) * 1000),
        len(chunks),
        sum(len(c) for c in chunks),
    )
    if not chunks:
        raise GeminiError("No audio received")
    return b"".join(chunks)


def pcm_to_wav(
    pcm: bytes,
    sample_rate: int = MUSIC_SAMPLE_RATE,
    channels: int = MUSIC_CHANNELS,
    sample_width: int = MUSIC_SAMPLE_WIDTH,
) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as w:
        w.setnchannels(channels)
        w.setsampwidth(sample_width)
        w.setframerate(sample_rate)
        w.writeframes(pcm)
    return buf.getvalue()
