# file: app/main.py
import asyncio
import json
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional
from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import StreamingResponse, JSONResponse
from app.config import get_settings
from app.errors import ConfigurationError, ExternalServiceError
from app.schema import ContactStatus, PipelineRequest
from app.orchestrator import Orchestrator, STAGES, select_stages
from app.logging_config import setup_logging
from app.services.registry import ClientRegistry
from app.tools.llm import ollama_reachable

setup_logging()

settings = get_settings()
app = FastAPI(title="leadflow", version="0.1.0")
registry = ClientRegistry(settings)
orchestrator = Orchestrator(registry)

@app.on_event("startup")
async def startup():
    """Open the store on startup"""
    await registry.connect()

@app.on_event("shutdown")
async def shutdown():
    await registry.close()

@app.get("/health")
async def health():
    """Health check with Ollama connectivity test"""
    try:
        ollama_ok = None
        if settings.llm_backend == "ollama":
            ollama_ok = await asyncio.to_thread(ollama_reachable, settings.ollama_base)

        services = await registry.health_check()

        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "ollama": {
                "connected": ollama_ok,
                "base_url": settings.ollama_base,
                "model": settings.ollama_model,
            },
            "services": services,
        }
    except (ConfigurationError, ExternalServiceError) as e:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error": str(e)}
        )

async def stream_pipeline(request: PipelineRequest) -> AsyncGenerator[bytes, None]:
    """Stream NDJSON events from pipeline"""
    async for event in orchestrator.run_pipeline(request.stages):
        yield (json.dumps(event, default=str) + "\n").encode()

@app.post("/run")
async def run_pipeline(request: PipelineRequest):
    """Run the selected stages (all by default) with NDJSON streaming"""
    try:
        select_stages(request.stages)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return StreamingResponse(
        stream_pipeline(request),
        media_type="application/x-ndjson"
    )

@app.post("/stages/{stage}")
async def run_stage(stage: str):
    """Run a single stage and return its report"""
    if stage not in STAGES:
        raise HTTPException(status_code=404, detail=f"Unknown stage {stage!r}")
    try:
        report = await orchestrator.run_stage(stage)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ExternalServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return report.model_dump()

@app.get("/contacts")
async def list_contacts(status: Optional[ContactStatus] = None, limit: int = Query(100, ge=1, le=1000)):
    """List contacts, oldest first when filtered by status, newest first otherwise"""
    records = registry.get_records()
    if status is not None:
        contacts = await records.contacts_in_status([status], limit=limit)
    else:
        contacts = await records.recent_contacts(limit=limit)
    return {
        "count": len(contacts),
        "contacts": [
            {
                "id": c.id,
                "email": c.email,
                "status": c.status.value,
                "source_query": c.source_query,
                "note": c.note,
                "has_persona": bool(c.persona),
                "created_at": c.created_at.isoformat(),
            }
            for c in contacts
        ]
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
