"""
ASGI entry point: `uvicorn formsync.main:app`
"""
from formsync.collaboration.server import create_app

app = create_app()
