"""Serve the Meeting Tasks API with uvicorn on the configured host and port."""

import sys
from pathlib import Path

import uvicorn

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from meeting_tasks.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "meeting_tasks.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
    )
