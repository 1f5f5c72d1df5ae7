"""contextindex command-line interface."""
