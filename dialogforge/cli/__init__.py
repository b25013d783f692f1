"""dialogforge command-line interface."""
