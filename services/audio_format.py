"""
Canonical linear-PCM WAV helpers.

All synthesized segment assets are assumed to be WAV files with a 44-byte
header. No resampling is ever done: the output format must match the
synthesis provider's native format.
"""

import struct
from dataclasses import dataclass
from typing import Optional

from config import get_settings

WAV_HEADER_SIZE = 44
PCM_FORMAT = 1


@dataclass(frozen=True)
class WavFormat:
    sample_rate: int = 24000
    num_channels: int = 1
    bits_per_sample: int = 16

    @property
    def bytes_per_sample(self) -> int:
        return self.bits_per_sample // 8

    @property
    def block_align(self) -> int:
        return self.num_channels * self.bytes_per_sample

    @property
    def byte_rate(self) -> int:
        return self.sample_rate * self.num_channels * self.bytes_per_sample

    @classmethod
    def from_settings(cls) -> "WavFormat":
        settings = get_settings()
        return cls(
            sample_rate=settings.sample_rate,
            num_channels=settings.num_channels,
            bits_per_sample=settings.bits_per_sample
        )


def build_wav_header(pcm_length: int, fmt: WavFormat) -> bytes:
    """Build a 44-byte RIFF/WAVE header for ``pcm_length`` bytes of PCM."""
    return struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + pcm_length,
        b"WAVE",
        b"fmt ",
        16,
        PCM_FORMAT,
        fmt.num_channels,
        fmt.sample_rate,
        fmt.byte_rate,
        fmt.block_align,
        fmt.bits_per_sample,
        b"data",
        pcm_length,
    )


def extract_pcm(asset: bytes) -> Optional[bytes]:
    """Strip the canonical header; None when the asset holds no PCM."""
    if len(asset) <= WAV_HEADER_SIZE:
        return None
    return asset[WAV_HEADER_SIZE:]


def pcm_duration(asset: bytes, fmt: WavFormat) -> float:
    """Duration in seconds derived from the sample count of a WAV asset."""
    pcm = extract_pcm(asset)
    if pcm is None:
        return 0.0
    samples = len(pcm) // fmt.block_align
    return samples / float(fmt.sample_rate)
