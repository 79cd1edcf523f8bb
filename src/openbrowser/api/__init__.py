"""HTTP surface of the engine process (FastAPI)."""
