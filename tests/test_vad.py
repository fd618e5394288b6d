from monke.voice.vad import VADConfig, VoiceActivityDetector


def test_normalize_pads_and_trims_to_valid_frame() -> None:
    # 20 ms at 16 kHz is 320 samples
    short = b"\x01\x00" * 300
    long = b"\x01\x00" * 330
    assert len(VoiceActivityDetector._normalize_frame(short, 16_000)) == 640
    assert len(VoiceActivityDetector._normalize_frame(long, 16_000)) == 640
    assert VoiceActivityDetector._normalize_frame(b"", 16_000) == b""


def test_silence_is_not_speech() -> None:
    vad = VoiceActivityDetector(VADConfig(aggressiveness=7))
    assert vad.config.aggressiveness == 3
    assert vad.is_speech(b"\x00\x00" * 320, 16_000) is False
