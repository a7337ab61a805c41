"""Uvicorn giriş noktası: `python main.py` veya `uvicorn app.main:app`."""
import os

import uvicorn

from app.main import app

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
