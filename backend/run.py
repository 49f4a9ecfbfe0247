#!/usr/bin/env python3
"""
Run script for the FormSync collaboration server
"""

import uvicorn
from formsync.core.config import settings

if __name__ == "__main__":
    # Run the application
    uvicorn.run(
        "formsync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
