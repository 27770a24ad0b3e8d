# vmportal/main.py
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from vmportal import __version__
from vmportal.api import vm_requests, vm_types, vms
from vmportal.config import settings
from vmportal.errors import PortalError

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("vmportal")

app = FastAPI(title="VM Portal API", version=__version__)

app.include_router(vms.router)
app.include_router(vm_requests.router)
app.include_router(vm_types.router)


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"Invalid request: {field} {first.get('msg', '')}".strip() if first else "Invalid request"
    return JSONResponse(status_code=422, content={"success": False, "message": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "message": f"Internal error: {exc}"})


@app.get("/")
def root():
    return {"success": True, "message": "vm portal up", "version": __version__}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("vmportal.main:app", host="0.0.0.0", port=8000)
