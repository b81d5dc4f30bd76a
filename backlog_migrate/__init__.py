"""Backlog notation to GitHub-flavored Markdown migration tool."""

__version__ = "0.1.0"
