"""Unit tests for the database layer: base repository and concrete repositories."""
