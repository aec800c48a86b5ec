"""Command-line interface for ssogate."""
