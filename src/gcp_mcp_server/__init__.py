"""MCP server for BigQuery and other Google Cloud services."""

__version__ = "3.0.0"
