#!/usr/bin/env python3
"""Run script for tasksync."""

import logging
import os

import uvicorn
from dotenv import load_dotenv

if __name__ == "__main__":
    load_dotenv()
    debug = os.getenv("DEBUG", "False").lower() == "true"
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "tasksync.api.app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "5000")),
        reload=debug
    )
