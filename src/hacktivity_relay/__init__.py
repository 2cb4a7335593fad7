"""Hacktivity Relay - Relay newly disclosed HackerOne reports into Discord."""

__version__ = "0.1.0"
