"""Aggregate RSS, Atom and RDF feeds and serve them over HTTP and MCP."""
