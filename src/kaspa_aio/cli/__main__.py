"""CLI entry point for running kaspa-aioctl as a module."""

from kaspa_aio.cli.main import main


if __name__ == "__main__":
    main()
