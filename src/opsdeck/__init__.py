"""Execution gateway, container control and deploy log streaming for the ops dashboard."""

__version__ = "0.1.0"
