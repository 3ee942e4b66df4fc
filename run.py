import uvicorn
from ocnexus.config import DaemonSettings
from ocnexus.logging_utility import logger


if __name__=='__main__':
    settings = DaemonSettings.load()
    logger.info(f"Starting OpenConnect Nexus on {settings.host}:{settings.port}")
    uvicorn.run("ocnexus.main:app", host=settings.host, port=settings.port)
