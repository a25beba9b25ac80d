"""Event operations exposed to consumers."""
