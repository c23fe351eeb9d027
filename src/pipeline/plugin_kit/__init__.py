"""Contract that every pipeline step implements."""
