"""Training and end-to-end demo pipelines."""

from .demo import DemoConfig, DemoResult, run_demo  # noqa: F401
from .losses import LossMode, compute_loss  # noqa: F401
from .training import (  # noqa: F401
    CancellationToken,
    TrainingConfig,
    TrainingHistory,
    TrainingLoop,
)
