"""Snapshot, apply and rollback commands over a migration workspace."""
