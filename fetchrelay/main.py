from __future__ import annotations

import uvicorn

from fetchrelay.api import app
from fetchrelay.config.settings import get_settings

__all__ = ["app", "main"]


def main() -> None:
    settings = get_settings()
    # log_config=None keeps the handlers installed by setup_logging()
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    main()
