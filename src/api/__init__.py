"""Public request models and the one-shot extraction facade."""
