from tiered_memory.config.settings import MemorySettings, settings

__all__ = ["MemorySettings", "settings"]
