"""Database access for Cortex."""
