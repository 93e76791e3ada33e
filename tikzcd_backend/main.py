"""
tikzcd-session Backend - FastAPI Application

This is the hosting shell around the session controller.
It provides:
- REST entry points for every controller operation (editing surface,
  property panel, code popup, toolbox, keyboard)
- WebSocket endpoint for real-time updates, alerts and clipboard relays
- CORS configuration for local frontend development
"""
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from tikzcd_core import (
    Diagram,
    EdgeUpdate,
    KeyboardController,
    KeyEvent,
    NoEdgeSelectedError,
    SessionConfig,
    SessionController,
    Tool,
)
from tikzcd_core.validation import validate_diagram, validation_summary

from .host import BackendHost
from .websocket_manager import ws_manager

logger = logging.getLogger(__name__)

host = BackendHost(ws_manager)

_session: Optional[SessionController] = None
_keyboard: Optional[KeyboardController] = None


# --- Async change notification ---
# Bridge between sync controller callbacks and async WebSocket broadcasts

_change_event: Optional[asyncio.Event] = None


def on_session_change():
    """Callback for session changes - sets event for async handler."""
    if _change_event is not None:
        _change_event.set()


host.on_message(on_session_change)


async def change_broadcaster():
    """Background task that broadcasts changes to WebSocket clients."""
    while True:
        await _change_event.wait()
        _change_event.clear()

        await ws_manager.publish(host.drain_messages())


def start_session(fragment: Optional[str] = None) -> SessionController:
    """Replace the global session, optionally loading a URL fragment."""
    global _session, _keyboard
    _session = SessionController(
        host=host,
        config=SessionConfig.from_env(),
        fragment=fragment,
    )
    _session.on_change(on_session_change)
    _keyboard = KeyboardController(_session)
    on_session_change()
    return _session


def get_session() -> SessionController:
    if _session is None:
        start_session(os.environ.get("TIKZCD_FRAGMENT"))
    return _session


def get_keyboard() -> KeyboardController:
    get_session()
    return _keyboard


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup/shutdown tasks."""
    global _change_event
    _change_event = asyncio.Event()

    session = get_session()
    logger.info("Session ready at %s", session.state.location)

    # Start background broadcaster
    broadcaster_task = asyncio.create_task(change_broadcaster())

    yield

    # Cleanup
    broadcaster_task.cancel()
    try:
        await broadcaster_task
    except asyncio.CancelledError:
        pass
    _change_event = None


# --- FastAPI App ---

app = FastAPI(
    title="tikzcd-session API",
    description="Session state backend for the commutative diagram editor",
    version="1.0.0",
    lifespan=lifespan
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _state_response(**extra) -> dict:
    return {"success": True, **extra, "state": get_session().get_state()}


# --- Health Check ---

@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "connections": ws_manager.connection_count}


# --- Session State ---

class StartSessionRequest(BaseModel):
    fragment: Optional[str] = None


@app.get("/api/session")
async def get_state():
    """Get the current session state."""
    return get_session().get_state()


@app.post("/api/session")
async def new_session(request: StartSessionRequest):
    """Start a new session, loading the diagram from a URL fragment if given."""
    start_session(request.fragment)
    return _state_response(alerts=host.pending_alerts)


@app.get("/api/leave-guard")
async def leave_guard():
    """Message to confirm before the page is closed."""
    return {"message": get_session().leave_warning()}


# --- Document Changes ---

@app.put("/api/diagram")
async def replace_diagram(diagram: Diagram):
    """Commit a full replacement diagram from the editing surface."""
    outcome = get_session().apply_document_change(diagram)
    return _state_response(outcome=outcome.value)


@app.post("/api/edges/{index}/click")
async def click_edge(index: int):
    """Toggle the selection of an edge."""
    try:
        get_session().select_edge(index)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _state_response()


@app.patch("/api/selected-edge")
async def update_selected_edge(request: EdgeUpdate):
    """Merge property-panel fields into the selected edge."""
    try:
        outcome = get_session().update_selected_edge(request)
    except NoEdgeSelectedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _state_response(outcome=outcome.value)


@app.delete("/api/selected-edge")
async def remove_selected_edge():
    """Remove the selected edge and prune blank nodes it leaves behind."""
    try:
        outcome = get_session().remove_selected_edge()
    except NoEdgeSelectedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _state_response(outcome=outcome.value)


# --- Undo/Redo ---

@app.post("/api/undo")
async def undo():
    """Undo the last step."""
    if get_session().undo():
        return _state_response()
    return {"success": False, "message": "Nothing to undo"}


@app.post("/api/redo")
async def redo():
    """Redo the last undone step."""
    if get_session().redo():
        return _state_response()
    return {"success": False, "message": "Nothing to redo"}


# --- Tools ---

class ToolRequest(BaseModel):
    tool: Tool


@app.post("/api/tool")
async def set_tool(request: ToolRequest):
    """Activate a tool."""
    get_session().set_tool(request.tool)
    return _state_response()


@app.get("/api/enums/tools")
async def get_tools():
    """Get available tools."""
    return {"tools": [t.value for t in Tool]}


# --- Code Popup ---

class CodeRequest(BaseModel):
    text: str


class CloseCodeRequest(BaseModel):
    text: Optional[str] = None


@app.post("/api/code/open")
async def open_code_popup():
    """Open the code popup with the diagram's tikz-cd markup."""
    code = get_session().open_code_popup()
    return _state_response(code=code)


@app.put("/api/code")
async def edit_code(request: CodeRequest):
    """Replace the popup text while the user types."""
    get_session().set_code_buffer(request.text)
    return _state_response()


@app.post("/api/code/close")
async def close_code_popup(request: CloseCodeRequest):
    """Close the popup (blur), committing the text if it changed and parses."""
    committed = get_session().close_code_popup(request.text)
    return _state_response(committed=committed, alerts=host.pending_alerts)


@app.post("/api/code/dismiss")
async def dismiss_code_popup():
    """Close the popup discarding its text."""
    get_session().dismiss_code_popup()
    return _state_response()


# --- Permalink ---

@app.post("/api/permalink")
async def copy_permalink():
    """Encode the diagram into the location fragment and copy the link."""
    url = get_session().copy_permalink()
    return _state_response(url=url, alerts=host.pending_alerts)


# --- Keyboard ---

@app.post("/api/keys/down")
async def key_down(event: KeyEvent):
    """Key pressed on the editor page."""
    handled = get_keyboard().key_down(event)
    return _state_response(handled=handled)


@app.post("/api/keys/up")
async def key_up(event: KeyEvent):
    """Key released on the editor page."""
    handled = get_keyboard().key_up(event)
    return _state_response(handled=handled)


# --- Alerts ---

@app.get("/api/alerts")
async def list_alerts():
    """User-facing messages waiting for acknowledgement."""
    return {"alerts": host.pending_alerts}


@app.post("/api/alerts/ack")
async def acknowledge_alerts():
    """Acknowledge every pending alert."""
    return {"success": True, "acknowledged": host.acknowledge()}


# --- Validation ---

@app.get("/api/diagram/validate")
async def validate_current_diagram():
    """
    Validate the current diagram for structural issues.

    Returns a list of issues (errors, info) and a summary.
    """
    issues = validate_diagram(get_session().document)
    return {
        "success": True,
        "issues": [issue.to_dict() for issue in issues],
        "summary": validation_summary(issues)
    }


# --- WebSocket ---

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time updates.

    Clients connect here to receive session_updated, alert, prompt,
    location and copy_text events.
    """
    await ws_manager.connect(websocket)

    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text('{"type": "pong"}')
    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)
    except Exception as e:
        logger.debug("WebSocket closed: %s", e)
        await ws_manager.disconnect(websocket)


def run():
    """Run the backend with uvicorn."""
    import uvicorn
    logging.basicConfig(
        level=os.environ.get("TIKZCD_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        app,
        host=os.environ.get("TIKZCD_HOST", "127.0.0.1"),
        port=int(os.environ.get("TIKZCD_PORT", "8765")),
    )


# --- Run with uvicorn ---

if __name__ == "__main__":
    run()
