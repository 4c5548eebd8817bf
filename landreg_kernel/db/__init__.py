"""Database layer: declarative base, engine, transactions and column types."""
