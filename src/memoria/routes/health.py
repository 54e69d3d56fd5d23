"""Health and readiness routes."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from memoria.db.connection import get_conn
from memoria.errors import StoreError

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz() -> dict[str, bool]:
    return {"ok": True}


@router.get("/readyz")
def readyz() -> JSONResponse:
    try:
        with get_conn() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM schema_migrations").fetchone()
    except StoreError as exc:
        return JSONResponse(status_code=503, content={"ok": False, "error": str(exc)})
    return JSONResponse(content={"ok": True, "migrations": int(row["n"]) if row else 0})
