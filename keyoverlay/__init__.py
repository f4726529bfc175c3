"""Control plane for the KeyOverlay keystroke overlay."""

__version__ = "0.3.0"
