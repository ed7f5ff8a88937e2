"""Pure aggregators over message sets. No I/O, no clocks, no shared state."""
