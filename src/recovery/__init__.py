"""Error classification, retry, circuit breaking and fallbacks."""
