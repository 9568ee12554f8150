"""Oracle-driven edge trading engine."""

__version__ = "0.1.0"
