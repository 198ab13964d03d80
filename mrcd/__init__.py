"""mrcd: a multi-room line-oriented chat daemon."""

__version__ = "0.1.0"
