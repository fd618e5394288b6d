import asyncio
import io
import wave
from types import SimpleNamespace

import pytest

from helpers import FakePlayback, make_settings
from monke.core.errors import SpeechSynthesisError
from monke.voice import tts as tts_module
from monke.voice.tts import PiperSpeechSynthesizer, PiperTTS

VOICE_RATE = 22_050


class FakeSynthesisConfig:
    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs


class FakeVoice:
    loads = 0
    produce_audio = True

    def __init__(self) -> None:
        self.configs: list[FakeSynthesisConfig | None] = []

    @classmethod
    def load(cls, model_path: str, config_path: str) -> "FakeVoice":
        cls.loads += 1
        return cls()

    def synthesize(self, text: str, syn_config=None):
        self.configs.append(syn_config)
        if not self.produce_audio:
            return
        yield SimpleNamespace(audio_int16_bytes=b"\x01\x00" * 100, sample_rate=VOICE_RATE, sample_channels=1)


@pytest.fixture(autouse=True)
def fake_piper(monkeypatch):
    FakeVoice.loads = 0
    FakeVoice.produce_audio = True
    monkeypatch.setattr(tts_module, "PiperVoice", FakeVoice)
    monkeypatch.setattr(tts_module, "SynthesisConfig", FakeSynthesisConfig)


@pytest.fixture
def voice_path(tmp_path):
    model = tmp_path / "voice.onnx"
    model.write_bytes(b"onnx")
    (tmp_path / "voice.onnx.json").write_text("{}", encoding="utf-8")
    return model


def last_length_scale(engine: PiperTTS) -> float:
    config = engine._voice.configs[-1]
    return config.kwargs.get("length_scale", 1.0)


def frame_rate(wav_bytes: bytes) -> int:
    with wave.open(io.BytesIO(wav_bytes), "rb") as wav:
        return wav.getframerate()


def test_wav_pitch_raises_frame_rate_and_slows_render(voice_path):
    engine = PiperTTS.from_model(voice_path)
    audio = engine.synthesize_wav("Hello", speaking_rate=1.0, pitch=12.0)
    assert frame_rate(audio) == VOICE_RATE * 2
    assert last_length_scale(engine) == pytest.approx(2.0)


def test_wav_rate_shortens_render(voice_path):
    engine = PiperTTS.from_model(voice_path)
    audio = engine.synthesize_wav("Hello", speaking_rate=2.0, pitch=0.0)
    assert frame_rate(audio) == VOICE_RATE
    assert last_length_scale(engine) == pytest.approx(0.5)


def test_wav_without_audio_raises(voice_path):
    FakeVoice.produce_audio = False
    engine = PiperTTS.from_model(voice_path)
    with pytest.raises(ValueError, match="no audio"):
        engine.synthesize_wav("Hello")


def test_missing_model_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        PiperTTS.from_model(tmp_path / "absent.onnx")


def make_synth(tmp_path, playback: FakePlayback, **overrides):
    synth = PiperSpeechSynthesizer(make_settings(tmp_path, **overrides), playback=playback)
    finished: list[bool] = []
    errors: list[SpeechSynthesisError] = []
    synth.bind(lambda: finished.append(True), errors.append)
    return synth, finished, errors


@pytest.mark.asyncio
async def test_local_synthesizer_applies_pitch_multiplier(tmp_path, voice_path):
    playback = FakePlayback()
    synth, finished, errors = make_synth(
        tmp_path, playback, tts_voice_path=str(voice_path), speech_pitch=2.0, speech_rate=1.0
    )

    synth.speak("Hi friend")
    await asyncio.sleep(0.3)

    assert errors == []
    assert finished == [True]
    _pcm, sample_rate, channels = playback.played[0]
    assert (sample_rate, channels) == (VOICE_RATE * 2, 1)
    assert last_length_scale(synth._tts) == pytest.approx(2.0)


@pytest.mark.asyncio
async def test_local_synthesizer_without_voice_reports_error(tmp_path):
    synth, finished, errors = make_synth(tmp_path, FakePlayback(), tts_voice_path=None)

    synth.speak("Hi")
    await asyncio.sleep(0.1)

    assert finished == []
    assert "not available" in errors[0].message
    assert not synth.is_speaking


@pytest.mark.asyncio
async def test_local_synthesizer_without_audio_reports_error(tmp_path, voice_path):
    FakeVoice.produce_audio = False
    synth, finished, errors = make_synth(tmp_path, FakePlayback(), tts_voice_path=str(voice_path))

    synth.speak("Hi")
    await asyncio.sleep(0.1)

    assert finished == []
    assert errors[0].message == "Speech synthesis produced no audio"


@pytest.mark.asyncio
async def test_warmup_loads_voice_once(tmp_path, voice_path):
    synth, _, _ = make_synth(tmp_path, FakePlayback(), tts_voice_path=str(voice_path))
    await synth.warmup()
    await synth.warmup()
    assert FakeVoice.loads == 1

    missing, _, _ = make_synth(tmp_path, FakePlayback(), tts_voice_path=None)
    await missing.warmup()
    assert FakeVoice.loads == 1
