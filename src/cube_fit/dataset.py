"""
Sample dataset and its fixed-width binary codec.

Each record is four little-endian float32 values (rotation.x, rotation.y,
rotation.z, scale): 16 bytes, no header, no padding, no length prefix. The
same layout is uploaded to the render device.
"""

from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Union

import logging
import numpy as np

from cube_fit.contracts import (
    CAPACITY,
    RECORD_DTYPE,
    RECORD_FIELDS,
    RECORD_SIZE,
    FormatError,
    Sample,
)

logger = logging.getLogger(__name__)


class SampleDataset:
    """Ordered (rotation, scale) samples in search order."""

    def __init__(self, samples: Optional[Iterable[Sample]] = None):
        self._samples: List[Sample] = list(samples) if samples is not None else []

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[Sample]:
        return iter(self._samples)

    def __getitem__(self, index):
        return self._samples[index]

    def __eq__(self, other) -> bool:
        if not isinstance(other, SampleDataset):
            return NotImplemented
        return self._samples == other._samples

    def __repr__(self) -> str:
        return f"SampleDataset(len={len(self._samples)})"

    def append(self, sample: Sample) -> None:
        self._samples.append(sample)

    def extend(self, samples: Iterable[Sample]) -> None:
        self._samples.extend(samples)

    def clear(self) -> None:
        self._samples.clear()

    def replace(self, samples: Iterable[Sample]) -> None:
        """Swap in a whole new sample list (no merge)."""
        self._samples = list(samples)

    def truncate_to_capacity(self, capacity: int = CAPACITY) -> int:
        """Drop entries past *capacity*; return how many were dropped."""
        dropped = max(0, len(self._samples) - capacity)
        if dropped:
            del self._samples[capacity:]
            logger.debug("Truncated %d samples past capacity %d", dropped, capacity)
        return dropped

    def snapshot(self, limit: Optional[int] = CAPACITY) -> np.ndarray:
        """Copy of the first *limit* samples as an ``(n, 4)`` float32 array."""
        samples = self._samples if limit is None else self._samples[:limit]
        if len(samples) < len(self._samples):
            logger.debug(
                "Snapshot keeps %d of %d samples", len(samples), len(self._samples)
            )
        return samples_to_array(samples)

    def encode(self) -> bytes:
        return encode(self._samples)


# ─── Codec ───────────────────────────────────────────────────────────────────

def samples_to_array(samples: Iterable[Sample]) -> np.ndarray:
    records = [s.to_record() for s in samples]
    if not records:
        return np.zeros((0, RECORD_FIELDS), dtype=RECORD_DTYPE)
    return np.asarray(records, dtype=RECORD_DTYPE).reshape(-1, RECORD_FIELDS)


def encode(samples: Union[SampleDataset, Iterable[Sample]]) -> bytes:
    """Serialize samples to ``16 * len(samples)`` bytes."""
    return samples_to_array(samples).tobytes()


def decode(data: bytes) -> List[Sample]:
    """Inverse of :func:`encode`.

    Raises:
        FormatError: if the byte length is not a multiple of the record size.
    """
    if len(data) % RECORD_SIZE != 0:
        raise FormatError(
            f"Sample data is {len(data)} bytes, not a multiple of {RECORD_SIZE}"
        )
    records = np.frombuffer(data, dtype=RECORD_DTYPE).reshape(-1, RECORD_FIELDS)
    return [Sample.from_record(r) for r in records.tolist()]


def save_dataset(dataset: SampleDataset, path: Union[str, Path]) -> Path:
    """Overwrite *path* with the encoded dataset."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(dataset.encode())
    logger.info("Saved %d samples to %s", len(dataset), out)
    return out


def load_dataset(dataset: SampleDataset, path: Union[str, Path]) -> SampleDataset:
    """Replace the contents of *dataset* with the samples stored at *path*.

    The file is fully decoded before anything is replaced, so a malformed
    file leaves *dataset* untouched.
    """
    src = Path(path)
    samples = decode(src.read_bytes())
    dataset.replace(samples)
    logger.info("Loaded %d samples from %s", len(samples), src)
    return dataset
