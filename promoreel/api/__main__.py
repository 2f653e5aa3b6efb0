"""API server entry point for python -m promoreel.api"""
import uvicorn
from promoreel.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "promoreel.api.app:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )
