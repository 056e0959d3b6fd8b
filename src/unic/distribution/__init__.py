"""Prize distribution and external senders."""
