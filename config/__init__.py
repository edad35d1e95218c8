"""Runtime settings for TickerPulse, read from the environment and ``.env``."""

from config.settings import GlobalConfig, get_config

__all__ = ["GlobalConfig", "get_config"]
