"""Event model, recurrence evaluation and instance expansion."""
