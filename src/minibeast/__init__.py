"""MiniBeast - Deploy pre-built validator images to AWS on demand.

MiniBeast accepts an uploaded container image archive plus AWS credentials
and provisions everything needed to run it as an on-demand Fargate task
behind a Step Functions workflow.

Main features:
- Five-stage provisioning with per-step progress and logs
- Retry from the failed step using the original configuration
- Persisted per-module deployment snapshots
- Validation runs and activity logs for deployed modules
"""

from minibeast.lib.errors import (
    ConfigError,
    DeploymentError,
    MiniBeastError,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "ConfigError",
    "DeploymentError",
    "MiniBeastError",
    "ValidationError",
]
