"""typeforge: runtime-defined datatypes with a hookable entity lifecycle."""

__version__ = "0.1.0"
