import uvicorn

from lumina.config import settings

if __name__ == "__main__":
    uvicorn.run("lumina.app:app", host=settings.app_host, port=settings.app_port)
