from chainwatch.config.settings import WatcherSettings, get_settings

__all__ = ["WatcherSettings", "get_settings"]
