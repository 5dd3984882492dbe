"""Docker Engine API bridge between a Windows client and a VM daemon."""

__version__ = "0.1.0"
