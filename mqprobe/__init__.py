"""Integration-test harness for the GitHub merge queue."""

__version__ = "0.1.0"
