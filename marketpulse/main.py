"""Entry point — run with: python -m marketpulse.main"""
import uvicorn

from marketpulse.api.v1.app import app  # noqa: F401

if __name__ == "__main__":
    uvicorn.run("marketpulse.main:app", host="0.0.0.0", port=8300, reload=True)
