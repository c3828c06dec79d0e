#!/usr/bin/env python3
"""
Usage:
    python run.py worker          # order worker pool
    python run.py api [port]      # HTTP + WebSocket API
    python run.py init-db         # create tables
"""
import asyncio
import sys

from dotenv import load_dotenv

load_dotenv()


def run_api(port: int = 8000):
    import uvicorn
    uvicorn.run("swap_engine.api.main:app", host="0.0.0.0", port=port)


if __name__ == "__main__":
    mode = sys.argv[1] if len(sys.argv) > 1 else "worker"

    if mode == "api":
        run_api(int(sys.argv[2]) if len(sys.argv) > 2 else 8000)
    elif mode == "init-db":
        from swap_engine.config import config
        from swap_engine.database.init_db import init_models
        from swap_engine.logging import setup_logging
        setup_logging(config)
        asyncio.run(init_models())
    elif mode == "worker":
        from swap_engine.main import main
        try:
            asyncio.run(main())
        except KeyboardInterrupt:
            pass
    else:
        print(__doc__)
        sys.exit(2)
