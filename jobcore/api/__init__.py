"""
Admin API module.
Read-only FastAPI application over the job table.
"""
