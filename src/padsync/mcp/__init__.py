"""MCP stdio server exposing padsync operations as tools."""
