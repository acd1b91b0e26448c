"""Command line entry points for paymap."""
