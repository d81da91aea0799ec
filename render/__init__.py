"""Audio rendering for briefing scripts."""

from .tts import (
    AudioSynthesizer,
    ElevenLabsSynthesizer,
    LocalWaveSynthesizer,
    VoiceConfig,
    chunk_text,
    get_synthesizer,
    split_sentences,
)

__all__ = [
    "AudioSynthesizer",
    "ElevenLabsSynthesizer",
    "LocalWaveSynthesizer",
    "VoiceConfig",
    "chunk_text",
    "get_synthesizer",
    "split_sentences",
]
