#!/usr/bin/env python3
"""
Quick runner for FHE Detective
==============================

Usage:
    python -m fhe_detective.run
"""

import logging

import uvicorn

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("Starting FHE Detective...")
    print("API docs: http://localhost:8000/docs")
    print("Health:   http://localhost:8000/health")
    print()

    uvicorn.run(
        "fhe_detective.api:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
