"""
HTTP surface (FastAPI) over `warden.core`.
"""
