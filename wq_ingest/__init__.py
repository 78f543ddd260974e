"""Pipeline de ingesta y alertas para monitoreo de calidad de agua."""

__version__ = "0.1.0"
