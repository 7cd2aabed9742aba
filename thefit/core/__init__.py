"""Core configuration and database plumbing."""
