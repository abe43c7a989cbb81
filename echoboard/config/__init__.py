"""Environment-based configuration."""
