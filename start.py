"""Server startup - imports the real app and runs it under uvicorn."""
import os

import uvicorn

from src.api.server import app

port = int(os.environ.get("PORT", "4000"))

if __name__ == "__main__":
    print(f"[start.py] Starting on port {port}", flush=True)
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
