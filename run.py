"""
Run script for AutoTrack API.
"""

import os
import uvicorn

from autotrack.infrastructure.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "autotrack.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=os.getenv("AUTOTRACK_DEV_MODE", "").lower() == "true",
        log_level="info"
    )
