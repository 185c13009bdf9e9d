"""User correction capture."""
