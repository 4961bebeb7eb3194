"""HTTP API (FastAPI)"""
