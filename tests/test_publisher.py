from __future__ import annotations

from pathlib import Path

import pytest

from briefing import EpisodePublisher, audio_path
from utils.exceptions import AudioGenerationError

from fakes import FakeSynthesizer


SCRIPT = " ".join(["Agents now negotiate prices with merchants on behalf of shoppers."] * 5)


def test_audio_path_is_deterministic() -> None:
    assert audio_path("ep1", "2026-03-02") == "episodes/2026-03-02-ep1.mp3"
    assert audio_path("ep1", None, "wav") == "episodes/ep1.wav"


def test_estimate_duration_uses_speaking_rate(blob_store) -> None:
    publisher = EpisodePublisher(FakeSynthesizer(), blob_store, words_per_minute=150)
    assert publisher.estimate_duration(" ".join(["w"] * 300)) == 120
    assert publisher.estimate_duration("") == 0


@pytest.mark.asyncio
async def test_render_and_publish_uploads_audio(blob_store, tmp_path) -> None:
    synthesizer = FakeSynthesizer()
    publisher = EpisodePublisher(synthesizer, blob_store)

    result = await publisher.render_and_publish(SCRIPT, episode_id="ep1", date="2026-03-02")

    assert result.audio_url == "http://audio.test/files/episodes/2026-03-02-ep1.mp3"
    stored = Path(tmp_path / "audio" / "episodes" / "2026-03-02-ep1.mp3")
    assert stored.read_bytes().startswith(b"ID3")
    assert result.audio_size_bytes == stored.stat().st_size
    assert result.audio_duration_seconds == publisher.estimate_duration(SCRIPT)
    assert synthesizer.texts == [SCRIPT]


@pytest.mark.asyncio
async def test_republish_overwrites_same_path(blob_store, tmp_path) -> None:
    publisher = EpisodePublisher(FakeSynthesizer(), blob_store)

    first = await publisher.render_and_publish(SCRIPT, episode_id="ep1", date="2026-03-02")
    second = await publisher.render_and_publish(SCRIPT.upper(), episode_id="ep1", date="2026-03-02")

    assert first.audio_url == second.audio_url
    files = list((tmp_path / "audio" / "episodes").iterdir())
    assert [f.name for f in files] == ["2026-03-02-ep1.mp3"]
    assert b"AGENTS" in files[0].read_bytes()


@pytest.mark.asyncio
async def test_short_script_rejected_before_synthesis(blob_store) -> None:
    synthesizer = FakeSynthesizer()
    publisher = EpisodePublisher(synthesizer, blob_store)

    with pytest.raises(AudioGenerationError):
        await publisher.render_and_publish("Too short for audio.", episode_id="ep1")
    assert synthesizer.texts == []


@pytest.mark.asyncio
async def test_missing_episode_id_rejected(blob_store) -> None:
    with pytest.raises(AudioGenerationError):
        await EpisodePublisher(FakeSynthesizer(), blob_store).synthesize(SCRIPT, episode_id="")


@pytest.mark.asyncio
async def test_synthesis_failure_propagates(blob_store, tmp_path) -> None:
    publisher = EpisodePublisher(FakeSynthesizer(error=AudioGenerationError("ElevenLabs returned 500")), blob_store)

    with pytest.raises(AudioGenerationError):
        await publisher.render_and_publish(SCRIPT, episode_id="ep1", date="2026-03-02")
    assert not (tmp_path / "audio" / "episodes").exists()


@pytest.mark.asyncio
async def test_before_upload_runs_between_synthesis_and_upload(blob_store, tmp_path) -> None:
    synthesizer = FakeSynthesizer()
    publisher = EpisodePublisher(synthesizer, blob_store)
    seen = []

    async def before_upload() -> None:
        seen.append((len(synthesizer.texts), (tmp_path / "audio" / "episodes").exists()))

    await publisher.render_and_publish(SCRIPT, episode_id="ep1", date="2026-03-02", before_upload=before_upload)

    assert seen == [(1, False)]


@pytest.mark.asyncio
async def test_before_upload_skipped_when_synthesis_fails(blob_store) -> None:
    publisher = EpisodePublisher(FakeSynthesizer(error=AudioGenerationError("boom")), blob_store)
    seen = []

    async def before_upload() -> None:
        seen.append(True)

    with pytest.raises(AudioGenerationError):
        await publisher.render_and_publish(SCRIPT, episode_id="ep1", before_upload=before_upload)
    assert seen == []
