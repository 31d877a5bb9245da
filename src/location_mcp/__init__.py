"""Share a live GPS location with an AI assistant through MCP."""

__version__ = "1.0.0"
