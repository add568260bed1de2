"""PostgreSQL-to-PostgreSQL schema migration and logical replication setup."""

__version__ = "0.1.0"
