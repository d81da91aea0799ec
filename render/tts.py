"""Audio synthesis: ElevenLabs over HTTP and a deterministic local WAV renderer."""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from array import array
from dataclasses import dataclass
import io
import logging
import math
import re
from typing import Any, List, Optional
import wave

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from utils.exceptions import AudioGenerationError, ConfigurationError


logger = logging.getLogger(__name__)

ELEVENLABS_API_BASE = "https://api.elevenlabs.io/v1"
# stays below the per-request character limit of every ElevenLabs model
MAX_CHARS_PER_REQUEST = 4500

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")


@dataclass
class VoiceConfig:
    voice_id: str = "21m00Tcm4TlvDq8ikWAM"
    model_id: str = "eleven_multilingual_v2"
    output_format: str = "mp3_44100_128"
    stability: float = 0.5
    similarity_boost: float = 0.75


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(str(text or "").strip()) if s.strip()]


def chunk_text(text: str, max_chars: int = MAX_CHARS_PER_REQUEST) -> List[str]:
    """Pack whole sentences into chunks of at most ``max_chars`` (oversized sentences are hard-split)."""
    chunks: List[str] = []
    current = ""
    for sentence in split_sentences(text):
        while len(sentence) > max_chars:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(sentence[:max_chars])
            sentence = sentence[max_chars:].lstrip()
        if not sentence:
            continue
        candidate = f"{current} {sentence}" if current else sentence
        if len(candidate) > max_chars:
            chunks.append(current)
            current = sentence
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


class AudioSynthesizer(ABC):
    """Text-to-speech capability returning encoded audio bytes."""

    content_type: str = "audio/mpeg"
    extension: str = "mp3"

    @property
    @abstractmethod
    def provider(self) -> str:
        ...

    @abstractmethod
    async def synthesize(self, text: str, voice: Optional[VoiceConfig] = None) -> bytes:
        """Render ``text``; raises ``AudioGenerationError`` on failure."""

    async def aclose(self) -> None:
        return None


class ElevenLabsSynthesizer(AudioSynthesizer):
    """
    ElevenLabs text-to-speech.

    Long scripts are sent in sentence-aligned chunks and the MP3 payloads
    concatenated; MP3 frames are self-delimiting so the result plays as one file.
    """

    content_type = "audio/mpeg"
    extension = "mp3"

    def __init__(
        self,
        api_key: Optional[str],
        voice: Optional[VoiceConfig] = None,
        timeout: float = 300.0,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = ELEVENLABS_API_BASE,
    ):
        if not api_key:
            raise ConfigurationError("ElevenLabs API key is not configured", {"env": "TTS_API_KEY"})
        self.api_key = api_key
        self.voice = voice or VoiceConfig()
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self._client = client

    @property
    def provider(self) -> str:
        return "elevenlabs"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    @retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _post_chunk(self, text: str, voice: VoiceConfig) -> bytes:
        response = await self._get_client().post(
            f"{self.base_url}/text-to-speech/{voice.voice_id}",
            params={"output_format": voice.output_format},
            headers={"xi-api-key": self.api_key, "Accept": "audio/mpeg"},
            json={
                "text": text,
                "model_id": voice.model_id,
                "voice_settings": {
                    "stability": voice.stability,
                    "similarity_boost": voice.similarity_boost,
                },
            },
        )
        response.raise_for_status()
        return response.content

    async def synthesize(self, text: str, voice: Optional[VoiceConfig] = None) -> bytes:
        voice = voice or self.voice
        chunks = chunk_text(text)
        if not chunks:
            raise AudioGenerationError("Nothing to synthesize")

        logger.info("tts_start provider=elevenlabs voice_id=%s chunks=%d chars=%d", voice.voice_id, len(chunks), len(text))
        parts: List[bytes] = []
        for idx, chunk in enumerate(chunks, start=1):
            try:
                parts.append(await self._post_chunk(chunk, voice))
            except httpx.HTTPStatusError as exc:
                raise AudioGenerationError(
                    f"ElevenLabs returned {exc.response.status_code}",
                    {"chunk": idx, "body": exc.response.text[:300]},
                ) from exc
            except httpx.HTTPError as exc:
                raise AudioGenerationError(f"ElevenLabs request failed: {exc}", {"chunk": idx}) from exc

        audio = b"".join(parts)
        logger.info("tts_complete provider=elevenlabs bytes=%d", len(audio))
        return audio

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class LocalWaveSynthesizer(AudioSynthesizer):
    """Deterministic tone-per-sentence WAV for offline and development runs."""

    content_type = "audio/wav"
    extension = "wav"

    def __init__(self, words_per_minute: int = 150, sample_rate: int = 8000, max_duration_sec: float = 300.0):
        self.words_per_minute = max(1, int(words_per_minute))
        self.sample_rate = max(8000, min(int(sample_rate), 48000))
        self.max_duration_sec = max_duration_sec

    @property
    def provider(self) -> str:
        return "local"

    def render(self, text: str) -> bytes:
        sentences = split_sentences(text) or ["..."]
        sample_rate = self.sample_rate
        budget = int(self.max_duration_sec * sample_rate)

        pcm = array("h")
        for idx, sentence in enumerate(sentences, start=1):
            if len(pcm) >= budget:
                break
            words = max(1, len(sentence.split()))
            seconds = max(0.35, words * 60.0 / self.words_per_minute)
            segment = min(int(seconds * sample_rate), budget - len(pcm))
            base_freq = 160.0 + (idx % 5) * 28.0 + min(80.0, len(sentence) * 0.4)
            for n in range(segment):
                t = n / float(sample_rate)
                fade_in = min(1.0, n / max(1.0, sample_rate * 0.03))
                fade_out = min(1.0, (segment - n) / max(1.0, sample_rate * 0.05))
                env = max(0.0, min(fade_in, fade_out))
                pcm.append(int(6500.0 * env * math.sin(2.0 * math.pi * base_freq * t)))

        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as wav_file:
            wav_file.setnchannels(1)
            wav_file.setsampwidth(2)
            wav_file.setframerate(sample_rate)
            wav_file.writeframes(pcm.tobytes())
        return buffer.getvalue()

    async def synthesize(self, text: str, voice: Optional[VoiceConfig] = None) -> bytes:
        audio = await asyncio.to_thread(self.render, text)
        logger.info("tts_complete provider=local bytes=%d", len(audio))
        return audio


def get_synthesizer(settings=None, provider: Optional[str] = None, **kwargs: Any) -> AudioSynthesizer:
    """Build the configured synthesizer (``elevenlabs`` or ``local``)."""
    if settings is None:
        from config import get_tts_settings
        settings = get_tts_settings()

    provider = (provider or settings.provider or "elevenlabs").strip().lower()
    if provider == "local":
        return LocalWaveSynthesizer(**kwargs)
    if provider == "elevenlabs":
        voice = VoiceConfig(
            voice_id=settings.voice_id,
            model_id=settings.model_id,
            output_format=settings.output_format,
            stability=settings.stability,
            similarity_boost=settings.similarity_boost,
        )
        return ElevenLabsSynthesizer(settings.api_key, voice=voice, timeout=settings.timeout, **kwargs)
    raise ConfigurationError(f"Unsupported TTS provider: {provider}", {"supported": ["elevenlabs", "local"]})
