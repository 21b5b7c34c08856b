"""Market scanner: compound-criteria screening and alerting."""

__version__ = "0.1.0"
