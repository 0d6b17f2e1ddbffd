#!/usr/bin/env python3
"""
WattWise API Server

FastAPI application that accepts BOM uploads and runs power budget
analysis sessions. Sessions live in memory for the lifetime of the process.

Usage:
    # Start the server
    uvicorn api:app --host 0.0.0.0 --port 8000 --reload

    # Or run directly
    python api.py

Endpoints:
    POST   /sessions                          - Upload a BOM and start analysis
    GET    /sessions/{id}                     - Session status, results and budget
    POST   /sessions/{id}/items/{index}/ignore - Toggle an item's ignore flag
    POST   /sessions/{id}/re-estimate         - Re-estimate selected items
    POST   /sessions/{id}/re-estimate-all     - Re-estimate every item
    POST   /sessions/{id}/cancel              - Cancel the running operation
    POST   /sessions/{id}/reset               - Back to idle
    GET    /sessions/{id}/export.xlsx         - Spreadsheet export
    GET    /sessions/{id}/export.html         - HTML report
    DELETE /sessions/{id}                     - Drop a session
    GET    /health                            - Health check endpoint
"""

import io
import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, File, Form, Header, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, StreamingResponse
from pydantic import BaseModel, Field

from wattwise import __version__
from wattwise.errors import ConfigurationError, SessionBusyError, SessionStateError
from wattwise.exporter import export_excel, render_html_report
from wattwise.llm_extractor import LLMConfig, LLMExtractor
from wattwise.models import AnalysisRecord, AnalysisStatus
from wattwise.session import AnalysisSession, SessionSnapshot

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=os.getenv("WATTWISE_LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("wattwise.api")

# Configuration
MAX_FILE_SIZE = int(os.getenv("WATTWISE_MAX_FILE_SIZE", 10 * 1024 * 1024))  # 10MB default
ALLOWED_SUFFIXES = (".xlsx", ".xlsm", ".xls", ".csv")
UI_YIELD_DELAY = float(os.getenv("WATTWISE_UI_YIELD_DELAY", 0.5))


class CreateSessionResponse(BaseModel):
    """Response model for a BOM upload."""
    session_id: str
    status: AnalysisStatus
    message: str
    status_url: str


class ReEstimateRequest(BaseModel):
    """Indices of the items to re-estimate."""
    indices: List[int] = Field(min_length=1)


# In-memory session storage; results are never persisted.
sessions: Dict[str, AnalysisSession] = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    logger.info("Starting WattWise API Server...")
    yield
    logger.info("Shutting down WattWise API Server...")
    for session in sessions.values():
        session.cancel()
        await session.extractor.aclose()
    sessions.clear()


# Create FastAPI app
app = FastAPI(
    title="WattWise API",
    description="API for LLM-assisted power and thermal budgeting of IT bills of materials",
    version=__version__,
    lifespan=lifespan,
)

# Configure CORS for portal access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def build_extractor(api_key: Optional[str], model: Optional[str]) -> LLMExtractor:
    """Create the batch analyzer for a new session."""
    return LLMExtractor(LLMConfig.from_env(api_key=api_key or None, model=model or None))


def get_session(session_id: str) -> AnalysisSession:
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "sessions": len(sessions),
        "api_key_configured": bool(os.getenv("OPENROUTER_API_KEY")),
        "timestamp": datetime.now().isoformat(),
    }


@app.post("/sessions", response_model=CreateSessionResponse, status_code=202)
async def create_session(
    file: UploadFile = File(...),
    model: Optional[str] = Form(None),
    x_openrouter_key: Optional[str] = Header(None),
):
    """
    Upload a BOM (Excel or CSV) and start analysis in the background.

    Poll /sessions/{session_id} until the status is COMPLETE or ERROR.
    """
    filename = file.filename or ""
    if not filename.lower().endswith(ALLOWED_SUFFIXES):
        raise HTTPException(status_code=400, detail="Only Excel or CSV files are accepted")

    content = await file.read()
    if len(content) > MAX_FILE_SIZE:
        raise HTTPException(
            status_code=400,
            detail=f"File too large. Maximum size is {MAX_FILE_SIZE / 1024 / 1024:.0f}MB",
        )

    try:
        extractor = build_extractor(x_openrouter_key, model)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    session_id = uuid.uuid4().hex
    session = AnalysisSession(extractor, ui_yield_delay=UI_YIELD_DELAY)
    sessions[session_id] = session

    session.start_analysis(content, filename)

    return CreateSessionResponse(
        session_id=session_id,
        status=session.status,
        message="BOM uploaded successfully. Analysis started.",
        status_url=f"/sessions/{session_id}",
    )


@app.get("/sessions/{session_id}", response_model=SessionSnapshot)
async def get_session_status(session_id: str):
    """Get the current state of a session."""
    return get_session(session_id).snapshot()


@app.post("/sessions/{session_id}/items/{index}/ignore", response_model=AnalysisRecord)
async def toggle_ignore(session_id: str, index: int):
    """Toggle whether an item counts towards the budget."""
    session = get_session(session_id)
    try:
        return session.toggle_ignore(index)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))


@app.post("/sessions/{session_id}/re-estimate", status_code=202)
async def re_estimate(session_id: str, request: ReEstimateRequest):
    """Re-estimate the selected items in the background."""
    session = get_session(session_id)
    try:
        session.start_re_estimate(request.indices)
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except IndexError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"message": f"Re-estimating {len(set(request.indices))} item(s)"}


@app.post("/sessions/{session_id}/re-estimate-all", status_code=202)
async def re_estimate_all(session_id: str):
    """Re-estimate every item in the background."""
    session = get_session(session_id)
    try:
        session.start_re_estimate_all()
    except SessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"message": f"Re-estimating all {len(session.results)} item(s)"}


@app.post("/sessions/{session_id}/cancel")
async def cancel_operation(session_id: str):
    """Cancel the operation in flight, if any."""
    session = get_session(session_id)
    return {"cancelled": session.cancel()}


@app.post("/sessions/{session_id}/reset", response_model=SessionSnapshot)
async def reset_session(session_id: str):
    """Clear results and errors and return to IDLE."""
    session = get_session(session_id)
    try:
        session.reset()
    except SessionBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return session.snapshot()


@app.get("/sessions/{session_id}/export.xlsx")
async def export_session_excel(session_id: str):
    """Download the analysis as a spreadsheet."""
    session = get_session(session_id)
    if session.status != AnalysisStatus.COMPLETE:
        raise HTTPException(status_code=409, detail="No completed analysis to export")

    buffer = io.BytesIO()
    export_excel(session.results, buffer)
    buffer.seek(0)
    filename = f"WattWise_Report_{datetime.now().strftime('%Y-%m-%d')}.xlsx"
    return StreamingResponse(
        buffer,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/sessions/{session_id}/export.html", response_class=HTMLResponse)
async def export_session_html(session_id: str):
    """Download the analysis as a standalone HTML report."""
    session = get_session(session_id)
    if session.status != AnalysisStatus.COMPLETE:
        raise HTTPException(status_code=409, detail="No completed analysis to export")
    return HTMLResponse(render_html_report(session.report))


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    """Drop a session and its results."""
    session = sessions.pop(session_id, None)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    session.cancel()
    await session.extractor.aclose()
    return {"message": f"Session {session_id} deleted successfully"}


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("WATTWISE_API_PORT", 8000))
    host = os.getenv("WATTWISE_API_HOST", "0.0.0.0")

    print(f"""
    WattWise API Server v{__version__}
    BOM Power & Thermal Budgeting API

    Starting server at http://{host}:{port}
    Documentation: http://{host}:{port}/docs
    """)

    uvicorn.run(app, host=host, port=port)
