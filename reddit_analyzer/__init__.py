"""Reddit Analyzer: rate-limited Reddit ingestion, PostgreSQL storage and filtered search."""

__version__ = "0.1.0"
