"""High-availability PostgreSQL cluster deployment over SSH."""

__version__ = "0.1.0"
