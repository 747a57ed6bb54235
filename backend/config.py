"""
Centralized launch configuration for the TubeScribe backend
Change port values here to update all backend references
"""
import os
from pathlib import Path

# Load environment variables from config/ports.env if it exists
config_file = Path(__file__).parent.parent / "config" / "ports.env"
if config_file.exists():
    with open(config_file) as f:
        for line in f:
            if line.strip() and not line.startswith('#') and '=' in line:
                key, value = line.strip().split('=', 1)
                os.environ.setdefault(key, value)

# Backend Configuration
BACKEND_PORT = int(os.environ.get('BACKEND_PORT', '8001'))
BACKEND_HOST = os.environ.get('BACKEND_HOST', '127.0.0.1')
API_BASE_URL = os.environ.get('API_BASE_URL', f'http://{BACKEND_HOST}:{BACKEND_PORT}')
APP_MODULE = "backend.tubescribe.main:app"

# Logging Configuration
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


def get_uvicorn_command(reload: bool = False):
    """Generate the uvicorn command with current configuration"""
    command = f"uvicorn {APP_MODULE} --host {BACKEND_HOST} --port {BACKEND_PORT} --log-level {LOG_LEVEL.lower()}"
    return f"{command} --reload" if reload else command


def get_health_url():
    """Get the health check URL"""
    return f"{API_BASE_URL}/health"


def get_transcript_url():
    return f"{API_BASE_URL}/api/transcript"


if __name__ == "__main__":
    print(f"Backend Configuration:")
    print(f"  Host: {BACKEND_HOST}")
    print(f"  Port: {BACKEND_PORT}")
    print(f"  API URL: {API_BASE_URL}")
    print(f"  Health URL: {get_health_url()}")
    print(f"  Transcript URL: {get_transcript_url()}")
    print(f"  Uvicorn Command: {get_uvicorn_command()}")
