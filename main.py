"""项目主启动入口。"""

from __future__ import annotations

import logging

import uvicorn

from opshub.config import APP_PORT, LOG_LEVEL, UVICORN_HOST, UVICORN_LOG_LEVEL, UVICORN_RELOAD

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def main() -> int:
    """启动 HTTP 服务。"""

    logger.info("启动参数: host=%s port=%d reload=%s", UVICORN_HOST, APP_PORT, UVICORN_RELOAD)
    uvicorn.run(
        "opshub.main:app",
        host=UVICORN_HOST,
        port=APP_PORT,
        log_level=UVICORN_LOG_LEVEL,
        reload=UVICORN_RELOAD,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
