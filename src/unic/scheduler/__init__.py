"""Contest lifecycle scheduler."""
