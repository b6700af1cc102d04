"""HMS Vault - data protection for the hospital management system."""

__version__ = "0.3.0"
