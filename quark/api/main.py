import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quark.api.routers.cluster import router as cluster_router
from quark.core.exceptions import ErrorKind, QuarkError

app = FastAPI()


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    exc_str = f'{exc}'.replace('\n', ' ').replace('   ', ' ')
    logging.error(f"{request}: {exc_str}")
    content = {'status_code': 10422, 'message': exc_str, 'data': None}
    return JSONResponse(content=content, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


@app.exception_handler(QuarkError)
async def quark_exception_handler(request: Request, exc: QuarkError):
    status_code = _STATUS_BY_KIND.get(exc.kind, status.HTTP_502_BAD_GATEWAY)
    logging.error(f"{request.url.path}: {exc}")
    content = {'kind': str(exc.kind), 'message': str(exc)}
    return JSONResponse(content=content, status_code=status_code)


app.include_router(cluster_router)
