"""Usage domain: append-only usage events and period summaries."""
