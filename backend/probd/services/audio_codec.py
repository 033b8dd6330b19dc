"""
ProBD Backend - PCM Audio Helpers
=================================

Conversions between the wire formats of the live consultation:

    browser mic   → 16 kHz mono PCM16, base64 in JSON frames (or raw binary)
    Gemini Live   ← audio/pcm;rate=16000 blobs
    Gemini Live   → 24 kHz mono PCM16
    browser       ← base64 PCM16, decoded to Float32 for the Web Audio API
"""

import base64
import binascii
from typing import Union

import numpy as np

from probd.exceptions import ValidationError

PCM16_SCALE = 32768.0


def encode_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_base64(data: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError(message="Audio frame is not valid base64.", field="data")


def pcm_mime_type(sample_rate: int) -> str:
    return f"audio/pcm;rate={sample_rate}"


def pcm16_to_float32(data: bytes, channels: int = 1) -> np.ndarray:
    """
    Decode little-endian PCM16 into float samples in [-1, 1).

    Returns an array shaped (channels, frames). Interleaved input is split so
    that row `c` holds every sample of channel `c`. A trailing partial frame
    is dropped.
    """
    if channels < 1:
        raise ValueError("channels must be >= 1")
    samples = np.frombuffer(data[: len(data) - len(data) % 2], dtype="<i2")
    frame_count = len(samples) // channels
    samples = samples[: frame_count * channels]
    return (samples.astype(np.float32) / PCM16_SCALE).reshape(frame_count, channels).T


def float32_to_pcm16(samples: Union[np.ndarray, list]) -> bytes:
    """Clip to [-1, 1] and encode as little-endian PCM16 bytes."""
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * PCM16_SCALE, clipped * (PCM16_SCALE - 1))
    return scaled.astype("<i2").tobytes()


def sample_count(data: bytes, channels: int = 1) -> int:
    """Number of PCM16 frames in `data`."""
    return len(data) // (2 * channels)
