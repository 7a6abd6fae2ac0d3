"""
Audio conversion utilities for the live voice session.

- Microphone frames arrive as float32 in [-1, 1] at 16kHz and go out as base64
  16-bit little-endian PCM.
- Model speech arrives as base64 16-bit PCM at 24kHz and is normalized back to
  float32 for the speaker.
"""

import base64
import binascii

import numpy as np

INPUT_SAMPLE_RATE = 16000
OUTPUT_SAMPLE_RATE = 24000
INPUT_MIME_TYPE = f"audio/pcm;rate={INPUT_SAMPLE_RATE}"

_PCM16_SCALE = 32768.0


def float_to_pcm16_bytes(samples) -> bytes:
    """
    Convert float samples in [-1, 1] to 16-bit little-endian PCM.

    Out-of-range input is clipped rather than wrapped.
    """
    data = np.asarray(samples, dtype=np.float32).reshape(-1)
    if data.size == 0:
        return b""
    clipped = np.clip(data, -1.0, 1.0)
    # Positive full scale is 32767, negative full scale is -32768.
    scaled = np.where(clipped < 0, clipped * _PCM16_SCALE, clipped * (_PCM16_SCALE - 1))
    return scaled.astype("<i2").tobytes()


def pcm16_bytes_to_float(pcm_bytes: bytes) -> np.ndarray:
    """Reinterpret 16-bit little-endian PCM as float32 in [-1, 1)."""
    if not pcm_bytes:
        return np.zeros(0, dtype=np.float32)
    if len(pcm_bytes) % 2:
        # A dangling half-sample cannot be played; drop it.
        pcm_bytes = pcm_bytes[:-1]
    samples = np.frombuffer(pcm_bytes, dtype="<i2")
    return samples.astype(np.float32) / _PCM16_SCALE


def encode_pcm_frame(samples) -> str:
    """Float frame -> base64 PCM16 string for a realtime input message."""
    return base64.b64encode(float_to_pcm16_bytes(samples)).decode("ascii")


def decode_pcm_frame(data: str) -> np.ndarray:
    """Base64 PCM16 payload -> float32 samples. Undecodable payloads yield no samples."""
    try:
        raw = base64.b64decode(data or "", validate=False)
    except (binascii.Error, ValueError):
        return np.zeros(0, dtype=np.float32)
    return pcm16_bytes_to_float(raw)


def frame_duration_seconds(samples, sample_rate: int, channels: int = 1) -> float:
    """Playback duration of an interleaved float frame."""
    if sample_rate <= 0 or channels <= 0:
        raise ValueError("sample_rate and channels must be positive")
    return len(samples) / channels / sample_rate


def resample(samples, from_rate: int, to_rate: int) -> np.ndarray:
    """Linear-interpolation resample of a mono float frame; duration is preserved."""
    data = np.asarray(samples, dtype=np.float32).reshape(-1)
    if data.size == 0 or from_rate == to_rate:
        return data
    target_len = max(1, int(round(data.size * to_rate / from_rate)))
    src_positions = np.arange(data.size, dtype=np.float64)
    dst_positions = np.linspace(0, data.size - 1, target_len)
    return np.interp(dst_positions, src_positions, data).astype(np.float32)


def parse_rate_from_mime(mime_type: str, default: int = OUTPUT_SAMPLE_RATE) -> int:
    """Read `rate=NNNN` from a MIME descriptor like `audio/pcm;rate=24000`."""
    for part in (mime_type or "").split(";"):
        key, _, value = part.strip().partition("=")
        if key == "rate":
            try:
                return int(value)
            except ValueError:
                return default
    return default
