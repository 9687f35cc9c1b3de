"""Data layer: sync services and cloud storage access."""
