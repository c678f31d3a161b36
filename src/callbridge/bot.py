import logging
import os
from contextlib import asynccontextmanager
from xml.sax.saxutils import quoteattr

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from callbridge.config import Settings, validate_config
from callbridge.orchestrator import CallOrchestrator

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

validate_config()

settings = Settings.from_env()
orchestrator = CallOrchestrator.from_settings(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await orchestrator.close()


app = FastAPI(title="Callbridge Outbound Voice Agent", lifespan=lifespan)


def _callback_response(result: dict) -> JSONResponse:
    status = 400 if result.get("error") == "invalid_callback" else 200
    return JSONResponse(result, status_code=status)


@app.get("/health")
async def health():
    return PlainTextResponse("ok")


@app.post("/outbound-call")
async def outbound_call(request: Request):
    try:
        lead = await request.json()
    except ValueError:
        return JSONResponse({"success": False, "error": "invalid_json"}, status_code=400)
    if not isinstance(lead, dict):
        return JSONResponse({"success": False, "error": "invalid_lead"}, status_code=400)

    try:
        result = await orchestrator.place_call(lead)
    except Exception as e:
        logger.error("Error initiating outbound call: %s", e)
        return JSONResponse({"success": False, "error": "call_failed"}, status_code=500)

    if result["success"]:
        return JSONResponse(result)
    status = 400 if result["error"] == "invalid_number" else 500
    return JSONResponse(result, status_code=status)


@app.api_route("/outbound-call-twiml", methods=["GET", "POST"])
async def outbound_call_twiml(request: Request):
    """Serve TwiML that connects the answered call to our media stream."""
    lead_id = request.query_params.get("leadId", "")
    stream_url = f"wss://{settings.public_host}{settings.relay.stream_path}"
    xml = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<Response>'
        '<Connect>'
        f'<Stream url={quoteattr(stream_url)}>'
        f'<Parameter name="leadId" value={quoteattr(lead_id)} />'
        '</Stream>'
        '</Connect>'
        '</Response>'
    )
    return Response(content=xml, media_type="application/xml")


@app.post("/call-status")
async def call_status(request: Request):
    try:
        result = orchestrator.handle_status_callback(dict(await request.form()))
    except Exception as e:
        logger.error("Status callback failed: %s", e)
        result = {"success": False, "error": "internal_error"}
    return _callback_response(result)


@app.post("/amd-status")
async def amd_status(request: Request):
    try:
        result = orchestrator.handle_amd_callback(dict(await request.form()))
    except Exception as e:
        logger.error("AMD callback failed: %s", e)
        result = {"success": False, "error": "internal_error"}
    return _callback_response(result)


@app.get("/leads/{lead_id}/retry")
async def get_retry(lead_id: str):
    info = orchestrator.retry_info(lead_id)
    if info is None:
        return JSONResponse({"success": False, "error": "not_found"}, status_code=404)
    return JSONResponse({"success": True, "retry": info})


@app.delete("/leads/{lead_id}/retry")
async def clear_retry(lead_id: str):
    cleared = orchestrator.clear_retry(lead_id)
    return JSONResponse({"success": cleared, "leadId": lead_id})


@app.websocket("/outbound-media-stream")
async def outbound_media_stream(websocket: WebSocket):
    await websocket.accept()
    await orchestrator.run_media_stream(websocket)


if __name__ == "__main__":
    port = int(os.getenv("PORT", "8765"))
    uvicorn.run("callbridge.bot:app", host="0.0.0.0", port=port)
