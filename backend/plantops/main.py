import logging

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Load .env before settings are built (run from /backend)
load_dotenv()

from plantops.audit import router as audit_router  # noqa: E402
from plantops.auth import auth_router, user_admin_router  # noqa: E402
from plantops.middleware import install_correlation_middleware, install_security_headers  # noqa: E402
from plantops.permissions import router as permissions_router  # noqa: E402
from plantops.plant import router as plant_router  # noqa: E402
from plantops.session import router as session_router  # noqa: E402
from plantops.settings import settings  # noqa: E402
from plantops.startup import register_startup_events  # noqa: E402

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# ─────────────────────────────
# FastAPI app
# ─────────────────────────────
app = FastAPI(title="Plant Operations Access API")
register_startup_events(app)


@app.get("/health")
def health(request: Request):
    diagnostics = getattr(request.app.state, "startup_diagnostics", None)
    if diagnostics is None:
        return {"ok": True}
    return {
        "ok": diagnostics.db_initialized and not diagnostics.errors,
        "env_issues": diagnostics.env_issues,
        "errors": diagnostics.errors,
    }


install_security_headers(app)
install_correlation_middleware(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_origin_regex=r"http://(localhost|127\.0\.0\.1):\d+" if settings.app_env in {"dev", "test"} else None,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router.router)
app.include_router(user_admin_router.router)
app.include_router(permissions_router.router)
app.include_router(plant_router.router)
app.include_router(audit_router.router)
app.include_router(session_router.router)
