"""Data models shared by the engine, API, and client."""
