"""Dense image classifier with plateau-aware training control."""

__version__ = "0.0.1"
