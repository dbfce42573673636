#!/usr/bin/env python
"""Start the StockSync API with the port taken from the environment."""
import os
import uvicorn

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))

    print(f"Starting StockSync on port {port}")

    uvicorn.run(
        "stocksync.main:app",
        host="0.0.0.0",
        port=port,
        log_level=os.environ.get("LOG_LEVEL", "info").lower()
    )
