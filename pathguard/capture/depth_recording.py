"""
Recorded Depth Sessions.

A session is a directory of .npz files, one per frame, replayed in
sorted filename order. Each file holds:
- depth:        uint16 H x W, millimetres (0 = unknown)
- pose:         4x4 matrix or 16-value column-major array
- color:        optional uint8 H x W x 3 RGB image
- timestamp_ms: optional float
"""

from __future__ import annotations

import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Iterator, List, Union

import numpy as np
from numpy.typing import NDArray
from loguru import logger

from pathguard.core.contracts import DepthFrame
from pathguard.core.errors import FrameUnavailableError


@dataclass
class RecordedFrame:
    """A single recorded depth frame with pose and optional color."""
    frame_id: int
    timestamp_ms: float
    depth: NDArray[np.uint16]
    pose: NDArray[np.float32]
    color: Optional[NDArray[np.uint8]] = None

    def to_depth_frame(self) -> DepthFrame:
        return DepthFrame.from_array(self.depth, timestamp_ms=self.timestamp_ms)


def save_recorded_frame(
    path: Union[str, Path],
    depth: NDArray[np.uint16],
    pose: NDArray[np.float32],
    color: Optional[NDArray[np.uint8]] = None,
    timestamp_ms: float = 0.0,
) -> Path:
    """Write one frame in the session format."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    arrays = {
        "depth": np.asarray(depth, dtype=np.uint16),
        "pose": np.asarray(pose, dtype=np.float32),
        "timestamp_ms": np.float64(timestamp_ms),
    }
    if color is not None:
        arrays["color"] = np.asarray(color, dtype=np.uint8)

    np.savez_compressed(path, **arrays)
    # savez appends .npz when missing
    return path if path.suffix == ".npz" else path.with_name(path.name + ".npz")


class DepthRecordingSource:
    """
    Replays a recorded session frame by frame.

    Iteration yields None in place of an unreadable frame so the
    caller skips it and carries on; read() raises instead.
    """

    def __init__(self, directory: Union[str, Path], loop: bool = False):
        """
        Initialize recording source.

        Args:
            directory: Session directory of .npz files
            loop: Restart from the first frame when the session ends
        """
        self.directory = Path(directory)
        self.loop = loop

        if not self.directory.is_dir():
            raise FileNotFoundError(f"Recording directory not found: {self.directory}")

        self._files: List[Path] = sorted(self.directory.glob("*.npz"))
        if not self._files:
            logger.warning(f"No .npz frames in {self.directory}")
        else:
            logger.info(f"Recording {self.directory}: {len(self._files)} frames")

    def __len__(self) -> int:
        return len(self._files)

    def read(self, index: int) -> RecordedFrame:
        """Load one frame. Raises FrameUnavailableError if it cannot be used."""
        path = self._files[index]
        try:
            with np.load(path) as data:
                depth = np.asarray(data["depth"], dtype=np.uint16)
                pose = np.asarray(data["pose"], dtype=np.float32)
                color = data["color"] if "color" in data.files else None
                timestamp_ms = float(data["timestamp_ms"]) if "timestamp_ms" in data.files else 0.0
        except (OSError, KeyError, ValueError, zipfile.BadZipFile) as e:
            raise FrameUnavailableError(f"Unreadable frame {path.name}: {e}") from e

        if depth.ndim != 2:
            raise FrameUnavailableError(f"Frame {path.name}: depth must be 2-D, got {depth.shape}")

        return RecordedFrame(
            frame_id=index,
            timestamp_ms=timestamp_ms,
            depth=depth,
            pose=pose,
            color=color,
        )

    def __iter__(self) -> Iterator[Optional[RecordedFrame]]:
        while True:
            for index in range(len(self._files)):
                try:
                    yield self.read(index)
                except FrameUnavailableError as e:
                    logger.warning(str(e))
                    yield None
            if not self.loop or not self._files:
                return
