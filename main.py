"""
Application entry point
"""

import os
import uvicorn
from agentic_service.core.config import get_settings
from agentic_service.main import app

if __name__ == "__main__":
    settings = get_settings()
    # Hosting platforms set the PORT environment variable
    port = int(os.getenv("PORT", settings.PORT))
    uvicorn.run(
        app,
        host=settings.HOST,
        port=port,
        reload=settings.DEBUG
    )
