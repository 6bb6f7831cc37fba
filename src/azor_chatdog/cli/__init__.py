"""Command-line interface for azor-chatdog."""
