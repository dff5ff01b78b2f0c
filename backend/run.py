#!/usr/bin/env python3
# backend/run.py
"""
Development server runner.

Uses DATABASE_URL from the environment or backend/.env (a local SQLite file
by default, created on startup).
"""
import os
from pathlib import Path
import sys

# Add backend to path
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

import uvicorn

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    print(f"Starting BookingFlow API at http://localhost:{port}")
    print(f"API Docs: http://localhost:{port}/docs")

    uvicorn.run("bookingflow.main:app", host="0.0.0.0", port=port, reload=True, log_level="info")
