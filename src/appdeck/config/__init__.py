from appdeck.config.settings import Settings, config

__all__ = ["Settings", "config"]
