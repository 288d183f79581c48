"""DealForge: verified loan document pipeline."""

__version__ = "1.0.0"
