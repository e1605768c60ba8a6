"""Command-line entry points and terminal/event output."""
