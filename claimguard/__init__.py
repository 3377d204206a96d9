"""claimguard - keeps issue assignments honest, fork activity included."""

__version__ = "0.1.0"
