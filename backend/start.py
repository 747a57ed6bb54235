#!/usr/bin/env python3
"""
Start the TubeScribe backend server.
Host, port and log level come from backend/config.py (environment or config/ports.env).
"""
import argparse
import logging
import subprocess
import sys
import time
from pathlib import Path

# Allow "python backend/start.py" from the repository root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from backend.config import APP_MODULE, BACKEND_HOST, BACKEND_PORT, LOG_LEVEL, get_health_url  # noqa: E402

# Set up logging for startup timing
logging.basicConfig(
    level=logging.INFO,
    format='[WEB_STARTUP] %(message)s'
)
logger = logging.getLogger(__name__)


def build_command(reload: bool):
    cmd = [
        sys.executable, "-m", "uvicorn",
        APP_MODULE,
        "--host", BACKEND_HOST,
        "--port", str(BACKEND_PORT),
        "--log-level", LOG_LEVEL.lower(),
    ]
    if reload:
        cmd.append("--reload")
    return cmd


def main():
    """Main function to start the backend server"""
    parser = argparse.ArgumentParser(description="Start the TubeScribe API server")
    parser.add_argument("--reload", action="store_true", help="restart on code changes")
    args = parser.parse_args()

    started = time.perf_counter()
    logger.info(f"phase=backend_script_start timestamp={time.strftime('%Y-%m-%dT%H:%M:%S', time.gmtime())}")

    print(f"🚀 Starting TubeScribe backend on {BACKEND_HOST}:{BACKEND_PORT}")
    print(f"📍 Health check: {get_health_url()}")
    print(f"📚 API docs: http://{BACKEND_HOST}:{BACKEND_PORT}/docs")
    print("-" * 50)

    cmd = build_command(args.reload)
    logger.info(f"phase=uvicorn_spawn_start cmd={' '.join(cmd[2:])}")
    try:
        subprocess.run(cmd, cwd=str(Path(__file__).resolve().parent.parent), check=False)
    except KeyboardInterrupt:
        print("\n🛑 Backend server stopped")
    except OSError as e:
        logger.error(f"phase=backend_script_error elapsed={(time.perf_counter() - started) * 1000:.3f}ms error={e}")
        print(f"❌ Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
