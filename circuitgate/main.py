from fastapi import FastAPI

from circuitgate.api.routes import router
from circuitgate.core.service import get_context

app = FastAPI(title="circuitgate")


@app.on_event("startup")
def _startup() -> None:
    get_context()


app.include_router(router)
