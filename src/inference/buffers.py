"""
Preallocated inference buffers.

One set per detector, sized to the network input edge. The canvas and input
tensor are reused for every frame; the output buffer is sized by the first
successful inference and reused afterwards.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

import numpy as np

from models.errors import InvalidArgumentError, InvalidStateError, ShapeMismatchError


class InferenceBuffers:
    """
    Reusable canvas / input tensor / output tensor for one detector.

    Not safe for concurrent use: the owning detector must keep at most one
    inference in flight.
    """

    def __init__(self, size: int):
        if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
            raise InvalidArgumentError(f"buffer size must be a positive integer (got {size!r})")
        self.size = size
        self.input_shape: Tuple[int, int, int, int] = (1, 3, size, size)
        self.canvas: Optional[np.ndarray] = np.zeros((size, size, 3), dtype=np.uint8)
        self.tensor: Optional[np.ndarray] = np.zeros(self.input_shape, dtype=np.float32)
        self.output: Optional[np.ndarray] = None
        self.output_dims: Optional[Tuple[int, ...]] = None
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    @property
    def flat_input(self) -> np.ndarray:
        """Flat channel-major view of the input tensor (length 3 * size * size)."""
        self._check_alive()
        return self.tensor.reshape(-1)

    def write_tensor_from_canvas(self) -> np.ndarray:
        """
        Convert the BGR canvas into the RGB, 0..1, NCHW input tensor in place.

        Returns the tensor (same object every call).
        """
        self._check_alive()
        # HWC BGR -> CHW RGB
        np.multiply(self.canvas[:, :, ::-1].transpose(2, 0, 1), 1.0 / 255.0, out=self.tensor[0], casting="unsafe")
        return self.tensor

    def store_output(self, raw: np.ndarray) -> np.ndarray:
        """
        Copy ``raw`` into the pooled output buffer.

        The first call fixes the output shape; later calls with a different
        shape raise ShapeMismatchError.
        """
        self._check_alive()
        dims = tuple(int(d) for d in raw.shape)
        if self.output is None:
            self.output = np.empty(dims, dtype=np.float32)
            self.output_dims = dims
        else:
            self.expect_output_dims(dims)
        np.copyto(self.output, raw, casting="unsafe")
        return self.output

    def expect_output_dims(self, dims: Sequence[int]) -> None:
        """Raise ShapeMismatchError if ``dims`` differs from the established output shape."""
        if self.output_dims is not None and tuple(dims) != self.output_dims:
            raise ShapeMismatchError(self.output_dims, tuple(dims))

    def release(self) -> None:
        self.canvas = None
        self.tensor = None
        self.output = None
        self.output_dims = None
        self._released = True

    def _check_alive(self) -> None:
        if self._released:
            raise InvalidStateError("inference buffers have been released")
