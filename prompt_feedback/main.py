"""Entry point: configure logging, load config, serve the HTTP API."""

from __future__ import annotations

import uvicorn

from prompt_feedback.api.app import create_app
from prompt_feedback.config import get_config
from prompt_feedback.core.logging_config import setup_logging


def main() -> None:
    config = get_config()
    setup_logging(level=config.logging.level, use_json=config.logging.json_output)
    app = create_app(config)
    uvicorn.run(app, host=config.api.host, port=config.api.port, log_config=None)


if __name__ == "__main__":
    main()
