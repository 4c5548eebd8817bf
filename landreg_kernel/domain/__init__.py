"""Pure domain types for the land records kernel.  ZERO I/O."""
