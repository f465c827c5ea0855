"""CLI module for ADO Mirror."""
