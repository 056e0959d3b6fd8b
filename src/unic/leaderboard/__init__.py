"""Leaderboard ranking."""
