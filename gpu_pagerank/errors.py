class PageRankError(Exception):
    """Base class for all solver errors."""


class ConfigurationError(PageRankError, ValueError):
    """Raised when solver settings or the input graph are unusable."""


class DeviceUnavailableError(ConfigurationError):
    """Raised when the GPU backend is requested but cannot be used."""


class ResourceExhaustionError(PageRankError, MemoryError):
    """Raised when a per-vertex array cannot be allocated."""


class KernelLaunchError(PageRankError, RuntimeError):
    """Raised when a CUDA kernel fails to compile or launch."""
