"""
Main entry point for running the micap client as a module.

This allows the package to be executed with:
    python -m micap_client

The recommended way to run it is the installed CLI command:
    micap-client
"""

from .cli import cli_main

if __name__ == "__main__":
    cli_main()
