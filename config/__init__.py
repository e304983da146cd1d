"""Environment settings and logging configuration."""
