"""
Development server for the Conquest API.
Runs the FastAPI app under uvicorn with the tick, market and opponent loops enabled.
"""

import uvicorn

from conquest.api.main import create_app
from conquest.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    app = create_app(settings)
    print(f"Serving at http://localhost:{settings.api_port}")
    print(f"Viewers connect to ws://localhost:{settings.api_port}/ws")
    print("Press Ctrl+C to stop")
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_config=None)
