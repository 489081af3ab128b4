"""DES tools, key components, HSM communication and a key metadata store."""

__version__ = "0.1.0"