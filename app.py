from __future__ import annotations

import argparse

import uvicorn
from dotenv import load_dotenv

from parallel_sync.api import build_service, create_app
from parallel_sync.config import load_config, resolve_paths
from parallel_sync.utils import setup_logger


load_dotenv()

cfg = load_config()
logger = setup_logger(resolve_paths(cfg).get("logs_dir", "logs"))
app = create_app(cfg, service=build_service(cfg, logger=logger))


def main() -> None:
    parser = argparse.ArgumentParser(description="Serve the parallel-text sync API.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    logger.info("Serving sync API on %s:%s", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
