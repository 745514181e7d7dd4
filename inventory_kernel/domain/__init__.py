"""Pure domain layer: value objects, events, link records, clock. Zero I/O."""
