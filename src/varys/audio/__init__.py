"""Speech output, response recording and transcription."""

from .gateway import LocalAudioGateway, build_local_audio_gateway
from .interfaces import AudioBuffer, AudioGateway, MicrophoneStream, PlaybackHandle, Speaker, SpeechRecognizer
from .silence import SilenceDetector, calibrate, chunk_energy, record_until_silence, wait_until_silent

__all__ = [
    "AudioBuffer",
    "AudioGateway",
    "LocalAudioGateway",
    "MicrophoneStream",
    "PlaybackHandle",
    "SilenceDetector",
    "Speaker",
    "SpeechRecognizer",
    "build_local_audio_gateway",
    "calibrate",
    "chunk_energy",
    "record_until_silence",
    "wait_until_silent",
]
