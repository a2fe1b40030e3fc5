from fleetwatch.shared.config import Settings, get_config, reload_config
from fleetwatch.shared.logging_setup import configure_logging

__all__ = [
    "get_config",
    "reload_config",
    "Settings",
    "configure_logging",
]
