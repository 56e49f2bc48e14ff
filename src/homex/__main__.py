"""HomeX CRM entrypoint.

Run with:
  python -m homex
"""

import logging
import os

import uvicorn


def main() -> None:
    logging.basicConfig(
        level=os.getenv("HOMEX_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    host = os.getenv("HOMEX_HOST", "0.0.0.0")
    port = int(os.getenv("HOMEX_PORT", "8000"))
    reload = os.getenv("HOMEX_RELOAD", "false").lower() in {"1", "true", "yes", "y"}
    uvicorn.run("homex.app:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    main()
