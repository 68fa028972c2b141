import numbers
from dataclasses import dataclass
from typing import Optional

from .errors import ConfigurationError

SUPPORTED_DTYPES = ("float32", "float64")
SUPPORTED_DEVICES = ("auto", "cpu", "gpu")
SUPPORTED_POLICIES = ("auto", "vertex", "edge")


@dataclass(frozen=True)
class PageRankConfig:
    """
    Settings for a PageRank solver.

    Args:
        iteration_max: Upper bound on the number of passes
        threshold: Convergence cutoff on the summed absolute score change
        damping: Probability of following an edge instead of teleporting
        dtype: Score precision ("float32" or "float64")
        device: Backend to run on ("auto", "cpu" or "gpu")
        policy: Edge load-balancing policy ("auto", "vertex" or "edge")
        partitions: Number of edge partitions per pass (None picks one)
        workers: Host threads for edge passes (None picks one)
    """
    iteration_max: int = 100
    threshold: float = 1e-6
    damping: float = 0.85
    dtype: str = "float32"
    device: str = "auto"
    policy: str = "auto"
    partitions: Optional[int] = None
    workers: Optional[int] = None

    def __post_init__(self):
        if isinstance(self.iteration_max, bool) or not isinstance(self.iteration_max, numbers.Integral):
            raise ConfigurationError(f"iteration_max must be an integer, got {self.iteration_max!r}")
        if self.iteration_max <= 0:
            raise ConfigurationError(f"iteration_max must be positive, got {self.iteration_max}")
        # NaN fails this comparison too
        if not self.threshold >= 0:
            raise ConfigurationError(f"threshold must be non-negative, got {self.threshold}")
        if not 0.0 <= self.damping < 1.0:
            raise ConfigurationError(f"damping must lie in [0, 1), got {self.damping}")
        if self.dtype not in SUPPORTED_DTYPES:
            raise ConfigurationError(f"dtype must be one of {SUPPORTED_DTYPES}, got {self.dtype!r}")
        if self.device not in SUPPORTED_DEVICES:
            raise ConfigurationError(f"device must be one of {SUPPORTED_DEVICES}, got {self.device!r}")
        if self.policy not in SUPPORTED_POLICIES:
            raise ConfigurationError(f"policy must be one of {SUPPORTED_POLICIES}, got {self.policy!r}")
        for name in ("partitions", "workers"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")

    def normalized_damping(self, num_nodes: int) -> float:
        """Uniform teleport mass given to every vertex."""
        return (1.0 - self.damping) / num_nodes
