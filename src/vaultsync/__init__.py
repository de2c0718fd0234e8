"""VaultSync — keeps a vault's file tree and its content index in step."""

__version__ = "0.1.0"
