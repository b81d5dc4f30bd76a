"""Clients for the Backlog API and the workspace git repository."""
