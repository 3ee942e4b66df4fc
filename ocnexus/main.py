from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from .config import DaemonSettings
from .vpn.exceptions import ProviderNotFoundError
from .vpn.manager import ConnectionManager
from .logging_utility import logger


class AgentRegistration(BaseModel):
    url: str


class ProviderSettings(BaseModel):
    settings: Dict[str, str]


class NotifyRequest(BaseModel):
    reason: str
    env: Dict[str, str] = {}


def create_app(manager: Optional[ConnectionManager] = None) -> FastAPI:
    if manager is None:
        manager = ConnectionManager(DaemonSettings.load())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await manager.shutdown()

    app = FastAPI(title="OpenConnect Nexus", lifespan=lifespan)
    app.state.manager = manager

    def lookup(identifier: str):
        try:
            return manager.status(identifier)
        except ProviderNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

    @app.post("/agent")
    async def register_agent(registration: AgentRegistration):
        """Register the agent that answers cookie requests"""
        manager.channel.register(registration.url)
        return {"status": "success", "agent": manager.channel.agent_url}

    @app.delete("/agent")
    async def unregister_agent():
        manager.channel.unregister()
        return {"status": "success"}

    @app.get("/providers")
    async def list_providers():
        return manager.list_providers()

    @app.put("/providers/{identifier}")
    async def put_provider(identifier: str, body: ProviderSettings):
        """Create or replace a provider"""
        manager.add_provider(identifier, body.settings)
        return lookup(identifier)

    @app.delete("/providers/{identifier}")
    async def delete_provider(identifier: str):
        try:
            manager.remove_provider(identifier)
        except ProviderNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"status": "success"}

    @app.get("/providers/{identifier}")
    async def get_provider(identifier: str):
        return lookup(identifier)

    @app.post("/providers/{identifier}/connect", status_code=202)
    async def connect(identifier: str):
        """Start a connection attempt; the outcome shows up in the provider status"""
        try:
            result = manager.connect(identifier)
        except ProviderNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

        if not result.ok:
            logger.error(f"Connect for {identifier} rejected: {result.error.value}")
            raise HTTPException(
                status_code=409,
                detail={"error": result.error.value, "message": result.detail},
            )
        return {"status": result.status.value}

    @app.post("/providers/{identifier}/notify")
    async def notify(identifier: str, body: NotifyRequest):
        """Called by the helper script when openconnect changes state"""
        try:
            state = manager.notify(identifier, body.reason, body.env)
        except ProviderNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"state": state.value}

    @app.post("/providers/{identifier}/disconnect")
    async def disconnect(identifier: str):
        try:
            manager.disconnect(identifier)
        except ProviderNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"status": "success"}

    @app.post("/providers/{identifier}/save")
    async def save(identifier: str):
        try:
            manager.save(identifier)
        except ProviderNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except OSError as e:
            logger.error(f"Error saving provider {identifier}: {str(e)}")
            raise HTTPException(status_code=500, detail="Failed to save provider")
        return {"status": "success"}

    return app


app = create_app()
