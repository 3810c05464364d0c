"""
Configuration partagée pour tous les tests.

- Stockage local : SQLite dans un fichier temporaire (permet de simuler un redémarrage)
- Backend : fausse API FastAPI pilotée par TestClient (un httpx.Client)
"""

import json

import pytest
from fastapi import Body, FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from scansync.database import init_storage, make_engine, make_session_factory
from scansync.services.local_storage import LocalStorage

VALID_TOKEN = "valid-token"
VALID_REFRESH_TOKEN = "refresh-ok"


class FakeBackendState:
    """État de la fausse API : employés connus, présences du jour, santé, jetons."""

    def __init__(self):
        self.employees = {"EMP-001": "present", "EMP-002": "late", "EMP-003": "present"}
        self.recorded = []
        self.healthy = True
        self.require_auth = False
        self.access_token = VALID_TOKEN
        self.scan_calls = 0
        self.logout_calls = 0


def _subject_of(code: str) -> str:
    try:
        data = json.loads(code)
    except ValueError:
        return code
    if isinstance(data, dict):
        return str(data.get("employeeId") or data.get("studentId") or data.get("id") or "")
    return code


def make_backend(state: FakeBackendState) -> FastAPI:
    app = FastAPI()

    def authorized(request: Request) -> bool:
        if not state.require_auth:
            return True
        return request.headers.get("Authorization") == f"Bearer {state.access_token}"

    def unauthorized() -> JSONResponse:
        return JSONResponse(status_code=401, content={"success": False, "error": {"message": "Token expired"}})

    @app.get("/health")
    def health():
        if not state.healthy:
            return JSONResponse(status_code=503, content={"status": "down"})
        return {"status": "OK"}

    @app.post("/api/attendance/scan")
    def scan(request: Request, payload: dict = Body(...)):
        state.scan_calls += 1
        if not authorized(request):
            return unauthorized()
        code = payload.get("qrCode") or ""
        subject = _subject_of(code)
        if not subject:
            return JSONResponse(status_code=400, content={
                "success": False,
                "error": {"message": "Invalid QR code", "details": "QR code integrity check failed"},
            })
        if subject not in state.employees:
            return JSONResponse(status_code=404, content={
                "success": False, "error": {"message": "Employee not found or inactive"},
            })
        if any(r["employeeId"] == subject for r in state.recorded):
            return JSONResponse(status_code=400, content={
                "success": False, "error": {"message": "Attendance already recorded for today"},
            })
        attendance = {
            "employeeId": subject,
            "status": state.employees[subject],
            "location": payload.get("location"),
        }
        state.recorded.append(attendance)
        return JSONResponse(status_code=201, content={
            "success": True,
            "data": {
                "attendance": attendance,
                "message": f"Attendance recorded successfully - {attendance['status']}",
            },
        })

    @app.get("/api/attendance/today")
    def today(request: Request):
        if not authorized(request):
            return unauthorized()
        return {
            "success": True,
            "data": {
                "attendance": state.recorded,
                "summary": {
                    "total": len(state.recorded),
                    "present": sum(1 for r in state.recorded if r["status"] == "present"),
                    "late": sum(1 for r in state.recorded if r["status"] == "late"),
                    "onTime": 0,
                },
            },
        }

    @app.post("/api/auth/refresh")
    def refresh(payload: dict = Body(...)):
        if payload.get("refreshToken") != VALID_REFRESH_TOKEN:
            return JSONResponse(status_code=401, content={"success": False, "error": {"message": "Invalid refresh token"}})
        return {"success": True, "data": {"accessToken": state.access_token}}

    @app.post("/api/auth/logout")
    def logout(payload: dict = Body(...)):
        state.logout_calls += 1
        return {"success": True}

    return app


@pytest.fixture
def backend_state():
    return FakeBackendState()


@pytest.fixture
def http_client(backend_state):
    """Client HTTP branché sur la fausse API."""
    with TestClient(make_backend(backend_state)) as c:
        yield c


@pytest.fixture
def storage_url(tmp_path):
    return f"sqlite:///{tmp_path / 'scanner_storage.db'}"


@pytest.fixture
def engine(storage_url):
    engine = make_engine(storage_url)
    init_storage(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def storage(engine):
    return LocalStorage(make_session_factory(engine))
