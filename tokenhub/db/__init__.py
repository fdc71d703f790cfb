"""Database layer - ORM models and async sessions."""
