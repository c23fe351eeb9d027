"""Registry, planning, scheduling and orchestration of pipeline steps."""
