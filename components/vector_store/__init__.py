"""Vector store component."""
