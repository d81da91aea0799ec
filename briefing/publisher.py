"""Render a clean script to audio and store it under a deterministic path."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from core import AudioResult
from render import AudioSynthesizer, VoiceConfig
from storage import BlobStore
from utils.exceptions import AudioGenerationError

from .timing import DEFAULT_WORDS_PER_MINUTE, count_words, seconds_for_words


logger = logging.getLogger(__name__)

MIN_AUDIO_SCRIPT_CHARS = 100


def audio_path(episode_id: str, date: Optional[str] = None, extension: str = "mp3") -> str:
    name = f"{date}-{episode_id}" if date else episode_id
    return f"episodes/{name}.{extension}"


class EpisodePublisher:
    """
    Synthesizes audio and uploads it to the blob store.

    Uploads overwrite, so re-publishing the same episode id replaces the
    earlier file. Synthesis and upload failures propagate.
    """

    def __init__(
        self,
        synthesizer: AudioSynthesizer,
        blob_store: BlobStore,
        *,
        voice: Optional[VoiceConfig] = None,
        min_script_chars: int = MIN_AUDIO_SCRIPT_CHARS,
        words_per_minute: int = DEFAULT_WORDS_PER_MINUTE,
    ):
        self.synthesizer = synthesizer
        self.blob_store = blob_store
        self.voice = voice
        self.min_script_chars = min_script_chars
        self.words_per_minute = words_per_minute

    def estimate_duration(self, clean_script: str) -> int:
        return seconds_for_words(count_words(clean_script), self.words_per_minute)

    async def synthesize(self, clean_script: str, *, episode_id: str) -> bytes:
        text = str(clean_script or "").strip()
        if len(text) < self.min_script_chars:
            raise AudioGenerationError(
                "Script too short for audio generation",
                {"chars": len(text), "min_chars": self.min_script_chars},
            )
        if not episode_id:
            raise AudioGenerationError("episode_id is required for audio file naming")

        logger.info(
            "audio_started episode_id=%s provider=%s chars=%d words=%d",
            episode_id,
            self.synthesizer.provider,
            len(text),
            count_words(text),
        )
        return await self.synthesizer.synthesize(text, self.voice)

    async def upload(self, audio: bytes, *, episode_id: str, date: Optional[str] = None) -> str:
        path = audio_path(episode_id, date, self.synthesizer.extension)
        url = await self.blob_store.put(path, audio, self.synthesizer.content_type)
        logger.info("audio_uploaded episode_id=%s path=%s bytes=%d", episode_id, path, len(audio))
        return url

    async def render_and_publish(
        self,
        clean_script: str,
        *,
        episode_id: str,
        date: Optional[str] = None,
        before_upload: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> AudioResult:
        """Synthesize then upload; ``before_upload`` runs once the audio exists."""
        audio = await self.synthesize(clean_script, episode_id=episode_id)
        if before_upload is not None:
            await before_upload()
        url = await self.upload(audio, episode_id=episode_id, date=date)
        return AudioResult(
            audio_url=url,
            audio_duration_seconds=self.estimate_duration(clean_script),
            audio_size_bytes=len(audio),
            content_type=self.synthesizer.content_type,
        )
