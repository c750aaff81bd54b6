"""Core utilities shared by every happenings_engine layer: dates, timezone, config, logging."""
