"""Run the kaspa-aio agent: ``python -m kaspa_aio.agent [CONFIG_DIR]``."""

import asyncio
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from kaspa_aio.agent.main import run_agent


logger = logging.getLogger("kaspa_aio.agent")


def main(argv=None):
    """Start the agent; the config directory may be given as the only argument."""
    argv = sys.argv[1:] if argv is None else argv
    config_dir = Path(argv[0]) if argv else None
    try:
        asyncio.run(run_agent(config_dir))
    except KeyboardInterrupt:
        sys.exit(0)
    except ValidationError as e:
        print(f"Invalid agent configuration:\n{e}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:
        logger.critical(f"Agent stopped: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
