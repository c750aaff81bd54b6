"""HTTP surface for happenings_engine."""
