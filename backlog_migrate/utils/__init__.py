"""Utility modules for the Backlog markdown migration tool."""
