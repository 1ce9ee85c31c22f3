"""
asgi.py -- Application assembly for AppGate.

Process managers and `python main.py serve` point here rather than at
api.main so deployment entry points stay stable if the API module moves.

Run with:  uvicorn asgi:app --reload
           python main.py serve
"""

from api.main import app

__all__ = ["app"]
