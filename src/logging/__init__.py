"""Structured logging with run, phase and step context."""
