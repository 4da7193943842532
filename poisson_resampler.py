"""
Online Bootstrap Resampling with Poisson Weights.

Simulates bootstrap sampling over a data stream without storing it. For a
bootstrap replicate of size N drawn with replacement, the number of times a
given example is chosen is Binomial(N, 1/N), which tends to Poisson(1) as N
grows (Oza and Russell, 2001). Each ensemble member therefore draws its own
count k per example and trains on the example with weight multiplied by k
(k = 0 skips the example).

License: MIT
"""

from typing import Optional
from dataclasses import dataclass

import numpy as np

from base_learners import Instance


# ============================================================================
# CONFIGURATION
# ============================================================================


@dataclass
class ResamplerConfig:
    """Configuration for the Poisson resampler.

    Attributes:
        lam: Poisson rate (1.0 reproduces standard bootstrap sampling)
        random_state: Seed used when no random stream is supplied
    """

    lam: float = 1.0
    random_state: Optional[int] = None


# ============================================================================
# RESAMPLER
# ============================================================================


class PoissonResampler:
    """
    Per-example replication counts for online bagging.

    All draws come from one sequential random stream. Pass ``rng`` to share
    a stream owned by someone else (the ensemble does this), or let the
    resampler seed its own from ``config.random_state``.

    Example:
        >>> resampler = PoissonResampler(random_state=42)
        >>> k = resampler.draw()
        >>> weighted = resampler.resample(Instance(x=[0.1, 0.2], y=1))
    """

    def __init__(
        self,
        rng: Optional[np.random.RandomState] = None,
        config: Optional[ResamplerConfig] = None,
        **kwargs,
    ):
        self.config = config or ResamplerConfig(**kwargs)
        self._validate_config()
        self.rng = rng if rng is not None else np.random.RandomState(self.config.random_state)

    def _validate_config(self) -> None:
        """Validate configuration parameters."""
        if self.config.lam <= 0:
            raise ValueError("lam must be positive")

    def draw(self) -> int:
        """Number of times the current example appears in one replicate."""
        return int(self.rng.poisson(self.config.lam))

    def resample(self, instance: Instance) -> Optional[Instance]:
        """Weighted copy of the instance, or None when it is not selected."""
        k = self.draw()
        if k == 0:
            return None
        return instance.with_weight(instance.weight * k)
