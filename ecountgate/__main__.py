"""Main entry point when executing ecountgate as a package.

This allows running the package using python -m ecountgate.
"""

from ecountgate.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
