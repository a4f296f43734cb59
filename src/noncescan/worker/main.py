from __future__ import annotations

import logging

import uvicorn

from .base import ExecutorWorker

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s"
)

app = ExecutorWorker.get_fastapi()

if __name__ == "__main__":
    uvicorn.run("noncescan.worker.main:app", host="0.0.0.0", port=8000, reload=True)
