"""healthprobe - concurrent HTTP endpoint health checker."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("healthprobe")
except PackageNotFoundError:
    # Package is not installed (e.g., running from source without pip install)
    __version__ = "0.0.0.dev0"

# Re-export core public API
from healthprobe.app import main
from healthprobe.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from healthprobe.config import Config, ConfigError, load_config
from healthprobe.models import CycleSummary, EndpointResult, EndpointSpec, ProbeOutcome
from healthprobe.orchestrator import CycleOrchestrator
from healthprobe.types import OutcomeKind

# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "__version__",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "Config",
    "ConfigError",
    "CycleOrchestrator",
    "CycleSummary",
    "EndpointResult",
    "EndpointSpec",
    "OutcomeKind",
    "ProbeOutcome",
    "load_config",
    "main",
]
