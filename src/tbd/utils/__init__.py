"""Small helpers shared across tbd modules."""
