"""FastAPI-based HTTP API server for external parameter access.

Exposes the parameter table of every controller port, diagnostics, the
stateless compare hook and the error statistics.  Runs in a background
thread via uvicorn.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Security
from fastapi.security import APIKeyHeader

from core.exceptions import ParameterLockedError, ReadOnlyParameterError, ValidationFailure
from core.hysteresis import compare

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# FastAPI app (module-level so routes can be registered at import time)
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Threshold Logic API",
    description="Threshold monitoring parameters, diagnostics and error statistics",
    version=API_VERSION,
)

# Shared references injected at startup
_refs: Dict[str, Any] = {
    "port_manager": None,
    "classifier": None,
    "api_key": "change-me-in-production",
}

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _verify_key(key: Optional[str] = Security(api_key_header)) -> str:
    if key != _refs["api_key"]:
        raise HTTPException(status_code=403, detail="Invalid API key")
    return key


def _manager():
    manager = _refs.get("port_manager")
    if manager is None:
        raise HTTPException(status_code=503, detail="Port manager not available")
    return manager


def _controller(port: str):
    try:
        return _manager().get(port)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown port '{port}'") from None


def _stats():
    classifier = _refs.get("classifier")
    if classifier is None:
        raise HTTPException(status_code=503, detail="Error statistics not available")
    return classifier.stats


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.get("/ports", dependencies=[Depends(_verify_key)])
def list_ports() -> Dict[str, Any]:
    ports = _manager().ports()
    return {"count": len(ports), "ports": ports}


@app.get("/ports/{port}/params", dependencies=[Depends(_verify_key)])
def get_params(port: str) -> Dict[str, Any]:
    return _controller(port).registry.snapshot()


@app.get("/ports/{port}/params/{name}", dependencies=[Depends(_verify_key)])
def get_param(port: str, name: str) -> Dict[str, Any]:
    controller = _controller(port)
    try:
        value = controller.read_param(name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown parameter '{name}'") from None
    return {"port": port, "name": name, "value": value}


@app.put("/ports/{port}/params/{name}", dependencies=[Depends(_verify_key)])
def put_param(port: str, name: str, value: Any = Body(..., embed=True)) -> Dict[str, Any]:
    controller = _controller(port)
    try:
        controller.write_param(name, value)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown parameter '{name}'") from None
    except (ReadOnlyParameterError, ParameterLockedError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValidationFailure as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"port": port, "name": name, "value": controller.read_param(name)}


@app.get("/ports/{port}/diagnostics", dependencies=[Depends(_verify_key)])
def get_diagnostics(port: str) -> Dict[str, Any]:
    return _controller(port).get_diagnostics()


@app.get("/compare", dependencies=[Depends(_verify_key)])
def get_compare(
    sample: float = Query(..., description="Input value (V)"),
    threshold: float = Query(..., description="Threshold (V)"),
    hysteresis: float = Query(0.0, ge=0.0, description="Hysteresis (V)"),
    prev_out: float = Query(0.0, description="Previous output"),
) -> Dict[str, Any]:
    return {"result": compare(sample, threshold, hysteresis, prev_out)}


@app.get("/errors/statistics", dependencies=[Depends(_verify_key)])
def get_error_statistics() -> Dict[str, int]:
    return _stats().snapshot()


@app.post("/errors/statistics/reset", dependencies=[Depends(_verify_key)])
def reset_error_statistics() -> Dict[str, int]:
    stats = _stats()
    stats.reset()
    return stats.snapshot()


@app.get("/status", dependencies=[Depends(_verify_key)])
def get_status() -> Dict[str, Any]:
    manager = _refs.get("port_manager")
    classifier = _refs.get("classifier")
    ports = {}
    if manager is not None:
        for name in manager.ports():
            try:
                controller = manager.get(name)
            except KeyError:
                continue
            ports[name] = {
                "enabled": controller.enabled,
                "output_state": int(controller.output_state),
                "alarm_status": controller.alarm_status.name,
                "loop_state": controller.loop.state.value,
            }
    return {
        "system": "threshold_logic",
        "version": API_VERSION,
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S"),
        "ports": ports,
        "errors": classifier.stats.snapshot() if classifier else {},
    }


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------

class APIServer:
    """Manages the uvicorn server running in a background thread.

    Parameters
    ----------
    ipc_cfg : dict
        The full content of ``ipc.yaml``.
    """

    def __init__(self, ipc_cfg: Dict[str, Any]):
        api_cfg = ipc_cfg.get("api_server", {})
        self._enabled = api_cfg.get("enabled", False)
        self._host = api_cfg.get("host", "0.0.0.0")
        self._port = api_cfg.get("port", 8000)
        _refs["api_key"] = api_cfg.get("api_key", "change-me-in-production")
        self._thread: Optional[threading.Thread] = None
        self._server = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_references(self, **kwargs: Any) -> None:
        _refs.update(kwargs)

    def start(self) -> None:
        if not self._enabled:
            logger.info("API server disabled by config")
            return
        import uvicorn

        config = uvicorn.Config(app, host=self._host, port=self._port, log_level="warning")
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(target=self._server.run, daemon=True, name="api-server")
        self._thread.start()
        logger.info("API server started on %s:%d", self._host, self._port)

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=5.0)
        self._server = None
        self._thread = None
        logger.info("API server stopped")
