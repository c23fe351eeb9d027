"""Shared domain models, errors and confidence scoring."""
