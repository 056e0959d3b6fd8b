"""Gift pool ledger."""
