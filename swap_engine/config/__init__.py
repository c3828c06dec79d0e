from swap_engine.config.settings import Config, config

__all__ = ["Config", "config"]
