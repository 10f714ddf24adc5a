"""Command line interface for the Credential Engine."""
