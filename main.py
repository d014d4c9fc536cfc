"""
ReviewFlow - Web Server Entry Point
===================================

Run this to start the API (webhooks, review links, operator endpoints):
    python main.py

With RUN_JOBS=true (the default) the queue processor, dispatcher and
EasyTable poller run inside the server process. Set RUN_JOBS=false and run
them separately with:
    python run_worker.py
"""

import logging

import uvicorn

from src.infrastructure.config import get_settings


def main():
    """Start the web server."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    settings = get_settings()

    print("\n" + "=" * 50)
    print("   ReviewFlow - API Server")
    print("=" * 50)
    print(f"\n   Starting server at http://{settings.server.host}:{settings.server.port}")
    print("   Press Ctrl+C to stop\n")

    uvicorn.run(
        "src.web.app:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.server.reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
