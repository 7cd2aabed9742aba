"""TheFit workout log client: server-first set sync and feedback polling."""

__version__ = "0.1.0"
