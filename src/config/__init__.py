"""Settings and built-in agent configuration."""
