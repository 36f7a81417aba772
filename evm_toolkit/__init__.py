"""EVM wallet activity filtering and batch ERC-20 transfer toolkit."""

__version__ = "0.1.0"
