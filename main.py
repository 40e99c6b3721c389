"""
Session Guard API — run with:
    uvicorn main:app --reload
or, for the migrations first:
    alembic upgrade head && uv run uvicorn main:app
"""

from session_guard.main import app  # noqa: F401

if __name__ == "__main__":
    import uvicorn

    from session_guard.core.config import settings

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
