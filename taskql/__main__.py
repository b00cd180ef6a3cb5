"""Entry point for `python -m taskql`."""

import logging

from taskql.config import load_settings
from taskql.server import mcp


def main() -> None:
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if settings.transport == "stdio":
        mcp.run(transport="stdio")
    else:
        mcp.run(transport=settings.transport, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
