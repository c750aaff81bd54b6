"""Occurrence expansion and override resolution."""
