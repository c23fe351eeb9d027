"""Built-in call extraction steps."""
