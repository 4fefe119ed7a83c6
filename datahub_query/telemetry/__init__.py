"""Per-run counters and timings."""
