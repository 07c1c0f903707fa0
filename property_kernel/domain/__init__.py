"""Pure domain layer: value objects, enums, transition tables, and rules."""
