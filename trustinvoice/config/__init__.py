"""Configuration: settings, constants and the network catalogue."""

from trustinvoice.config.networks import (
    ALGORAND_NETWORKS,
    EVM_NETWORKS,
    Blockchain,
    NetworkConfig,
)
from trustinvoice.config.settings import Settings, get_settings, settings


__all__ = [
    "ALGORAND_NETWORKS",
    "EVM_NETWORKS",
    "Blockchain",
    "NetworkConfig",
    "Settings",
    "get_settings",
    "settings",
]
