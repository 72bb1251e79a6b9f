"""Command-line interface for the MiniBeast deployer."""
