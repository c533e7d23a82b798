"""Main entry point when executing conduit as a package.

This allows running the package using python -m conduit.
"""

from conduit.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
