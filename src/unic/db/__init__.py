"""ORM base, column types and models."""
