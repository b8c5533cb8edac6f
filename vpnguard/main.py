import os
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from . import control
from .killswitch.config import ConfigProvider, DEFAULT_CONFIG_FILE
from .logging_utility import logger


app = FastAPI(title="vpnguard")
config = ConfigProvider(os.environ.get("VPNGUARD_CONFIG", DEFAULT_CONFIG_FILE)).load()


class StatusResponse(BaseModel):
    state: str
    running: bool
    public_ip: Optional[str] = None
    dns_servers: list[str] = []
    uptime: Optional[float] = None
    interface: Optional[str] = None
    killswitch: bool = False
    timestamp: Optional[str] = None


@app.get("/status", response_model=StatusResponse)
async def get_status():
    """Last published status snapshot"""
    snapshot = control.status(config)
    running = control.is_running(config)
    if snapshot is None:
        return StatusResponse(state="unknown", running=running)
    return StatusResponse(running=running, **snapshot.to_dict())


@app.post("/stop")
def stop_supervisor():
    """Stop the running supervisor and unwind its protection"""
    try:
        stopped = control.stop(config)
    except Exception as e:
        logger.error(f"Error stopping supervisor: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to stop supervisor")
    if not stopped:
        raise HTTPException(status_code=504, detail="Supervisor did not stop in time")
    return {"status": "success", "message": "Supervisor stopped"}
