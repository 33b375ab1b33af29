"""MCP server exposing SpiceDB authorization queries as tools."""

__version__ = "0.1.0"
