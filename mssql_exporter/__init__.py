"""Prometheus exporter for Microsoft SQL Server."""

__version__ = "1.0.0"
