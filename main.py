from __future__ import annotations

import logging

from calendar_assistant.config import LOG_LEVEL

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

from calendar_assistant.app import app  # noqa: E402

__all__ = ["app"]

if __name__ == "__main__":
  import uvicorn

  uvicorn.run("main:app", host="0.0.0.0", port=8000)
