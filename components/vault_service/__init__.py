"""Vault service component: indexing passes, search and status."""
