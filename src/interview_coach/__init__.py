"""Voice mock-interview coach: spoken questions, captured answers, scored feedback."""

__version__ = "0.1.0"
