"""Audio mixing state: per-source gain and mute.

Mixing operates on float sample blocks in [-1.0, 1.0]; the platform
encoder consumes the mixed block.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

MIN_GAIN = 0.0
MAX_GAIN = 2.0
MIN_SAMPLE_RATE = 44_100
MICROPHONE = "microphone"


@dataclass
class AudioChannel:
    gain: float = 1.0
    muted: bool = False


class AudioMixer:
    def __init__(self, sample_rate: int = 48_000, channels: int = 2):
        if sample_rate < MIN_SAMPLE_RATE:
            raise ValueError(f"Sample rate must be at least {MIN_SAMPLE_RATE} Hz")
        if channels not in (1, 2):
            raise ValueError("Output must be mono or stereo")
        self.sample_rate = sample_rate
        self.channels = channels
        self._sources: dict[str, AudioChannel] = {}

    @property
    def sources(self) -> dict[str, AudioChannel]:
        return dict(self._sources)

    def add_source(self, source_id: str, gain: float = 1.0) -> None:
        self._sources[source_id] = AudioChannel(gain=self._checked_gain(gain))

    def remove_source(self, source_id: str) -> None:
        self._sources.pop(source_id, None)

    @staticmethod
    def _checked_gain(gain: float) -> float:
        if not MIN_GAIN <= gain <= MAX_GAIN:
            raise ValueError(f"Gain must be between {MIN_GAIN} and {MAX_GAIN}")
        return float(gain)

    def _channel(self, source_id: str) -> AudioChannel:
        try:
            return self._sources[source_id]
        except KeyError:
            raise KeyError(f"Unknown audio source '{source_id}'") from None

    def set_gain(self, source_id: str, gain: float) -> None:
        self._channel(source_id).gain = self._checked_gain(gain)

    def set_muted(self, source_id: str, muted: bool) -> None:
        self._channel(source_id).muted = muted

    def is_muted(self, source_id: str) -> bool:
        return self._channel(source_id).muted

    def mix(self, blocks: Mapping[str, Sequence[float]]) -> list[float]:
        """Sum gain-scaled blocks of registered, unmuted sources, clipped to [-1, 1]."""
        length = max((len(b) for b in blocks.values()), default=0)
        out = [0.0] * length
        for source_id, block in blocks.items():
            channel = self._sources.get(source_id)
            if channel is None or channel.muted or channel.gain == 0:
                continue
            for i, sample in enumerate(block):
                out[i] += sample * channel.gain
        return [max(-1.0, min(1.0, s)) for s in out]
