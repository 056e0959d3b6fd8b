"""Contest lifecycle and prize configuration."""
