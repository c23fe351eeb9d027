"""Per-step execution records and cost estimation."""
