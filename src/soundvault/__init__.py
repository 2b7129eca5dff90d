"""SoundVault: local-first audio asset library with an offline-tolerant remote mirror."""

__version__ = "0.1.0"
