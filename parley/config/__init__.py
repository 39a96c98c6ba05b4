"""Configuration module for parley."""

from parley.config.schema import (
    Config,
    ConfigPrecedence,
    ConversationConfig,
    ProviderConfig,
    ResilienceConfig,
    RuntimeConfig,
    SummaryConfig,
    ToolResultPersistence,
    load_config,
)

__all__ = [
    "Config",
    "ConfigPrecedence",
    "ConversationConfig",
    "ProviderConfig",
    "ResilienceConfig",
    "RuntimeConfig",
    "SummaryConfig",
    "ToolResultPersistence",
    "load_config",
]
