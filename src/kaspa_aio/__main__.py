"""Main entry point dispatcher for kaspa-aio commands."""

import sys


def main():
    """Point at the agent and CLI entry points."""
    print("Use 'python -m kaspa_aio.agent' to run the agent")
    print("Use 'python -m kaspa_aio.cli' or 'kaspa-aioctl' for the command-line interface")
    sys.exit(1)


if __name__ == "__main__":
    main()
