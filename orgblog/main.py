from __future__ import annotations

from fastapi import FastAPI, HTTPException

from orgblog.api.routers import identity, tenancy, verification
from orgblog.infra.audit import AuditMiddleware
from orgblog.infra.db import check_db_ready

app = FastAPI(
    title="orgblog",
    description="Organization and department scoped membership, roles and verification.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(identity.router, prefix="/api/identity", tags=["identity"])
app.include_router(tenancy.router, prefix="/api/tenancy", tags=["tenancy"])
app.include_router(verification.router, prefix="/api/verifications", tags=["verifications"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
