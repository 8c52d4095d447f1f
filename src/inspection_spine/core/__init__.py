"""Core primitives shared by the scheduling engine and the CLI."""
