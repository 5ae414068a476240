import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cueflow.database import engine, init_db
from cueflow.routes import matches
from cueflow.services.match_store import SqlMatchStore

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Cueflow Match API")

_cors_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_extra = os.getenv("CORS_ORIGINS", "")
if _extra:
    _cors_origins.extend(o.strip() for o in _extra.split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Shared match records, live snapshots and game flow
app.include_router(matches.router, prefix="/api", tags=["matches"])

app.state.match_store = SqlMatchStore(engine)


@app.on_event("startup")
def on_startup():
    init_db()

    route_count = 0
    for r in app.routes:
        methods = getattr(r, "methods", None)
        path = getattr(r, "path", None)
        if path:
            methods_str = ", ".join(sorted(methods)) if methods else "N/A"
            logger.info(f"{methods_str:20} {path}")
            route_count += 1
    logger.info(f"Total routes: {route_count}")


@app.get("/api/health")
def health_check():
    return {"app_name": "Cueflow Match API", "status": "healthy"}
