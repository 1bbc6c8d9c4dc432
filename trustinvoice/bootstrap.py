"""
Engine wiring.

Builds a ready SettlementEngine from settings: logging first, then the
adapter factory for the configured networks.
"""

from loguru import logger

from trustinvoice.config.settings import Settings, get_settings
from trustinvoice.services.chains.factory import AdapterFactory
from trustinvoice.services.settlement.engine import SettlementEngine
from trustinvoice.utils.logging import setup_logging


def create_settlement_engine(
    settings: Settings | None = None,
    adapter_factory: AdapterFactory | None = None,
    configure_logging: bool = True,
) -> SettlementEngine:
    """
    Create a settlement engine.

    Args:
        settings: Configuration (defaults to the global settings)
        adapter_factory: Adapter builder (defaults to network-backed adapters)
        configure_logging: Install the loguru sinks from settings

    Returns:
        Engine with the default blockchain's session active
    """
    settings = settings or get_settings()
    if configure_logging:
        setup_logging(settings)

    engine = SettlementEngine(settings=settings, adapter_factory=adapter_factory)
    names = ", ".join(chain.value for chain in engine.supported_blockchains())
    logger.info(
        f"Settlement engine ready on {engine.active_blockchain.value} (supported: {names})"
    )
    return engine
