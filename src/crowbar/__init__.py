"""Crowbar - tunnel TCP connections through plain HTTP long-polling."""

__version__ = "0.1.0"
