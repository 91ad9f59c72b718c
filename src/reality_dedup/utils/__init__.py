"""Text, address and grouping utilities."""
