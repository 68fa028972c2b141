import logging
from typing import Any, Tuple

import numpy as np

from ..errors import DeviceUnavailableError, ResourceExhaustionError

logger = logging.getLogger(__name__)


def _load_cupy():
    """Import cupy on demand so host-only installs never touch CUDA."""
    try:
        import cupy as cp
    except ImportError as exc:
        raise DeviceUnavailableError(
            "device='gpu' requires cupy (pip install gpu-pagerank[gpu])"
        ) from exc
    return cp


def gpu_available() -> bool:
    """Return True when cupy is importable and reports a usable CUDA device."""
    try:
        cp = _load_cupy()
    except DeviceUnavailableError:
        return False
    return bool(cp.is_available())


class Device:
    """
    Memory, transfer and sort provider for one backend.

    The host backend uses numpy arrays, the GPU backend uses cupy arrays.
    Everything above this class only talks to ``device.xp`` and the methods
    below, so the same solver code runs on either side.
    """

    def __init__(self, name: str):
        """
        Args:
            name: "cpu" or "gpu"
        """
        if name == "gpu":
            cp = _load_cupy()
            if not cp.is_available():
                raise DeviceUnavailableError("device='gpu' requested but no CUDA device is available")
            self.xp = cp
        elif name == "cpu":
            self.xp = np
        else:
            raise DeviceUnavailableError(f"unknown device {name!r}")
        self.name = name
        self.allocated_bytes = 0

    @property
    def is_gpu(self) -> bool:
        return self.name == "gpu"

    def allocate(self, size: int, dtype: Any, fill: float = 0) -> Any:
        """
        Allocate a filled one-dimensional array on this device.

        Args:
            size: Number of elements
            dtype: Element type
            fill: Initial value of every element

        Returns:
            The new array

        Raises:
            ResourceExhaustionError: If the allocation fails
        """
        try:
            array = self.xp.full(size, fill, dtype=dtype)
        except MemoryError as exc:
            raise ResourceExhaustionError(
                f"could not allocate {size} x {np.dtype(dtype).name} on {self.name}"
            ) from exc
        except Exception as exc:
            if self.is_gpu and isinstance(exc, self.xp.cuda.memory.OutOfMemoryError):
                raise ResourceExhaustionError(
                    f"could not allocate {size} x {np.dtype(dtype).name} on {self.name}"
                ) from exc
            raise
        self.allocated_bytes += array.nbytes
        return array

    def free(self, array: Any) -> None:
        """Account for an array returned by allocate() going away."""
        if array is not None:
            self.allocated_bytes = max(0, self.allocated_bytes - array.nbytes)

    def asarray(self, data: Any, dtype: Any = None) -> Any:
        """Copy host data onto this device (no-op on the host backend)."""
        return self.xp.asarray(data, dtype=dtype)

    def to_host(self, array: Any) -> np.ndarray:
        """Blocking copy of a device array into host memory."""
        if self.is_gpu:
            return self.xp.asnumpy(array)
        return np.array(array, copy=True)

    def scalar_to_host(self, array: Any) -> float:
        """Blocking read of the first element of a device array."""
        if self.is_gpu:
            return float(array[:1].get()[0])
        return float(array[0])

    def synchronize(self) -> None:
        """Wait for all queued device work to finish."""
        if self.is_gpu:
            self.xp.cuda.Stream.null.synchronize()

    def used_bytes(self) -> int:
        """Bytes currently held by this backend's allocator."""
        if self.is_gpu:
            return int(self.xp.get_default_memory_pool().used_bytes())
        return self.allocated_bytes

    def sort_pairs(self, keys: Any, values: Any, descending: bool = False) -> Tuple[Any, Any]:
        """
        Sort values by keys.

        Ties may come out in any relative order.

        Args:
            keys: Sort keys
            values: Payload carried along with each key
            descending: Largest key first when True

        Returns:
            Tuple of (sorted keys, values in matching order)
        """
        order = self.xp.argsort(keys)
        if descending:
            order = order[::-1]
        return keys[order], values[order]

    def __repr__(self) -> str:
        return f"Device({self.name!r})"


def get_device(name: str = "auto") -> Device:
    """
    Resolve a device name into a Device.

    Args:
        name: "auto", "cpu" or "gpu"; "auto" prefers the GPU when one is usable

    Returns:
        Device instance
    """
    if name == "auto":
        name = "gpu" if gpu_available() else "cpu"
        logger.debug("auto-selected device %s", name)
    return Device(name)
