"""Ring buffer of swap usage samples.

Holds the last N (tick, used_kb) pairs for the header sparkline. Default
capacity is 60 samples (one minute at the default 1s tick).
"""

from collections import deque
from dataclasses import dataclass


@dataclass(frozen=True)
class SwapSample:
    """Swap usage at one tick."""

    tick: int
    used_kb: int


class SwapHistory:
    """Fixed-capacity history; the oldest sample is dropped when full."""

    def __init__(self, max_samples: int = 60) -> None:
        if max_samples < 1:
            raise ValueError(f"max_samples must be >= 1, got {max_samples}")
        self._samples: deque[SwapSample] = deque(maxlen=max_samples)

    def __len__(self) -> int:
        """Return number of samples in buffer."""
        return len(self._samples)

    @property
    def is_empty(self) -> bool:
        """Return True if buffer has no samples."""
        return len(self._samples) == 0

    @property
    def capacity(self) -> int:
        """Return maximum number of samples the buffer can hold."""
        return self._samples.maxlen or 0

    @property
    def samples(self) -> tuple[SwapSample, ...]:
        """Samples oldest first (immutable copy)."""
        return tuple(self._samples)

    def values(self) -> list[int]:
        """Used swap (KiB) per sample, oldest first."""
        return [s.used_kb for s in self._samples]

    def push(self, tick: int, used_kb: int) -> None:
        """Append a sample."""
        self._samples.append(SwapSample(tick=tick, used_kb=used_kb))

    def clear(self) -> None:
        """Empty the buffer."""
        self._samples.clear()
