import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from . import deps, schemas
from .database import Base, make_engine, make_session_factory
from .error_handlers import register_exception_handlers
from .middleware import RateLimitMiddleware, RequestLoggingMiddleware, SecurityHeadersMiddleware
from .models import Task
from .services import Identity, Services, TaskPage, build_services
from .settings import Settings, get_settings
from .validation import parse, require


def _task(task: Task) -> schemas.TaskOut:
    return schemas.TaskOut.model_validate(task)


def _task_page(page: TaskPage) -> schemas.PaginatedEnvelope[schemas.TaskOut]:
    return schemas.PaginatedEnvelope[schemas.TaskOut](
        data=[_task(t) for t in page.items],
        pagination=page.meta,
    )


# -----------------------------------------------------------------------------
# AUTH routes
# -----------------------------------------------------------------------------
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


@auth_router.post("/register", response_model=schemas.Envelope[schemas.AuthOut], status_code=201)
def register(
    user_in: schemas.UserRegister,
    db: Session = Depends(deps.get_db),
    services: Services = Depends(deps.get_services),
):
    result = services.auth.register(db, user_in)
    return schemas.Envelope[schemas.AuthOut](
        data=schemas.AuthOut(user=schemas.UserOut.model_validate(result.user), token=result.token),
        message="User registered successfully",
    )


@auth_router.post("/login", response_model=schemas.Envelope[schemas.AuthOut])
def login(
    credentials: schemas.UserLogin,
    db: Session = Depends(deps.get_db),
    services: Services = Depends(deps.get_services),
):
    result = services.auth.login(db, credentials)
    return schemas.Envelope[schemas.AuthOut](
        data=schemas.AuthOut(user=schemas.UserOut.model_validate(result.user), token=result.token),
        message="Login successful",
    )


@auth_router.get("/verify", response_model=schemas.Envelope[schemas.VerifyOut])
def verify(identity: Identity = Depends(deps.get_current_identity)):
    return schemas.Envelope[schemas.VerifyOut](
        data=schemas.VerifyOut(user=schemas.IdentityOut.model_validate(identity)),
        message="Token is valid",
    )


# -----------------------------------------------------------------------------
# TASK routes (every route requires an identity)
# -----------------------------------------------------------------------------
tasks_router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@tasks_router.get("", response_model=schemas.PaginatedEnvelope[schemas.TaskOut])
def list_tasks(
    identity: Identity = Depends(deps.get_current_identity),
    query: schemas.TaskQuery = Depends(deps.task_query),
    db: Session = Depends(deps.get_db),
    services: Services = Depends(deps.get_services),
):
    return _task_page(services.tasks.list(db, identity.id, query))


@tasks_router.post("", response_model=schemas.Envelope[schemas.TaskOut], status_code=201)
def create_task(
    task_in: schemas.TaskCreate,
    identity: Identity = Depends(deps.get_current_identity),
    db: Session = Depends(deps.get_db),
    services: Services = Depends(deps.get_services),
):
    task = services.tasks.create(db, identity.id, task_in)
    return schemas.Envelope[schemas.TaskOut](data=_task(task), message="Task created successfully")


@tasks_router.get("/stats", response_model=schemas.Envelope[schemas.TaskStats])
def task_stats(
    identity: Identity = Depends(deps.get_current_identity),
    db: Session = Depends(deps.get_db),
    services: Services = Depends(deps.get_services),
):
    return schemas.Envelope[schemas.TaskStats](data=services.tasks.stats(db, identity.id))


@tasks_router.get("/overdue", response_model=schemas.PaginatedEnvelope[schemas.TaskOut])
def overdue_tasks(
    identity: Identity = Depends(deps.get_current_identity),
    paging: schemas.TaskQuery = Depends(deps.page_query),
    db: Session = Depends(deps.get_db),
    services: Services = Depends(deps.get_services),
):
    return _task_page(services.tasks.overdue(db, identity.id, paging.page, paging.limit))


@tasks_router.get("/priority/{priority}", response_model=schemas.PaginatedEnvelope[schemas.TaskOut])
def tasks_by_priority(
    priority: str,
    identity: Identity = Depends(deps.get_current_identity),
    paging: schemas.TaskQuery = Depends(deps.page_query),
    db: Session = Depends(deps.get_db),
    services: Services = Depends(deps.get_services),
):
    wanted = require(parse(schemas.TaskQuery, {"priority": priority}), "Invalid priority").priority
    return _task_page(services.tasks.by_priority(db, identity.id, wanted, paging.page, paging.limit))


@tasks_router.get("/search/{term}", response_model=schemas.PaginatedEnvelope[schemas.TaskOut])
def search_tasks(
    term: str,
    identity: Identity = Depends(deps.get_current_identity),
    paging: schemas.TaskQuery = Depends(deps.page_query),
    db: Session = Depends(deps.get_db),
    services: Services = Depends(deps.get_services),
):
    wanted = require(parse(schemas.TaskQuery, {"search": term}), "Invalid search term").search
    return _task_page(services.tasks.search(db, identity.id, wanted, paging.page, paging.limit))


@tasks_router.get("/{task_id}", response_model=schemas.Envelope[schemas.TaskOut])
def get_task(
    task_id: int,
    identity: Identity = Depends(deps.get_current_identity),
    db: Session = Depends(deps.get_db),
    services: Services = Depends(deps.get_services),
):
    return schemas.Envelope[schemas.TaskOut](data=_task(services.tasks.get(db, identity.id, task_id)))


@tasks_router.put("/{task_id}", response_model=schemas.Envelope[schemas.TaskOut])
def update_task(
    task_id: int,
    task_in: schemas.TaskUpdate,
    identity: Identity = Depends(deps.get_current_identity),
    db: Session = Depends(deps.get_db),
    services: Services = Depends(deps.get_services),
):
    task = services.tasks.update(db, identity.id, task_id, task_in)
    return schemas.Envelope[schemas.TaskOut](data=_task(task), message="Task updated successfully")


@tasks_router.delete("/{task_id}", response_model=schemas.Envelope[dict])
def delete_task(
    task_id: int,
    identity: Identity = Depends(deps.get_current_identity),
    db: Session = Depends(deps.get_db),
    services: Services = Depends(deps.get_services),
):
    services.tasks.delete(db, identity.id, task_id)
    return schemas.Envelope[dict](message="Task deleted successfully")


@tasks_router.patch("/{task_id}/toggle", response_model=schemas.Envelope[schemas.TaskOut])
def toggle_task(
    task_id: int,
    identity: Identity = Depends(deps.get_current_identity),
    db: Session = Depends(deps.get_db),
    services: Services = Depends(deps.get_services),
):
    task = services.tasks.toggle(db, identity.id, task_id)
    state = "completed" if task.completed else "pending"
    return schemas.Envelope[schemas.TaskOut](data=_task(task), message=f"Task marked as {state}")


# -----------------------------------------------------------------------------
# Health / index
# -----------------------------------------------------------------------------
meta_router = APIRouter(tags=["meta"])


@meta_router.get("/health")
def health(request: Request, settings: Settings = Depends(deps.get_settings)):
    return schemas.Envelope[dict](
        data={
            "status": "ok",
            "environment": settings.APP_ENV,
            "version": settings.APP_VERSION,
            "uptime": round(time.monotonic() - request.app.state.started_at, 3),
        },
        message="Server is running",
    )


@meta_router.get("/api")
def api_index(identity: Optional[Identity] = Depends(deps.get_optional_identity)):
    return schemas.Envelope[dict](
        data={
            "authenticated": identity is not None,
            "user": schemas.IdentityOut.model_validate(identity).model_dump(by_alias=True) if identity else None,
            "endpoints": {
                "auth": {
                    "register": "POST /api/auth/register",
                    "login": "POST /api/auth/login",
                    "verify": "GET /api/auth/verify",
                },
                "tasks": {
                    "list": "GET /api/tasks",
                    "create": "POST /api/tasks",
                    "get": "GET /api/tasks/{id}",
                    "update": "PUT /api/tasks/{id}",
                    "delete": "DELETE /api/tasks/{id}",
                    "toggle": "PATCH /api/tasks/{id}/toggle",
                    "byPriority": "GET /api/tasks/priority/{priority}",
                    "overdue": "GET /api/tasks/overdue",
                    "search": "GET /api/tasks/search/{term}",
                    "stats": "GET /api/tasks/stats",
                },
            },
        },
        message="Task Tracker API",
    )


# -----------------------------------------------------------------------------
# App factory
# -----------------------------------------------------------------------------
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the app and every long-lived object it uses, exactly once."""
    settings = settings or get_settings()
    engine = make_engine(
        settings.DATABASE_URL,
        pool_size=settings.DB_POOL_SIZE,
        pool_timeout=settings.DB_POOL_TIMEOUT,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        if settings.DB_AUTO_CREATE:
            Base.metadata.create_all(bind=engine)
        yield
        engine.dispose()

    app = FastAPI(title="Task Tracker", version=settings.APP_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)
    app.state.services = build_services(settings)
    app.state.started_at = time.monotonic()

    register_exception_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS or ["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    )
    # wraps CORS and the limiter, so 429s and preflights get the headers too
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(meta_router)
    app.include_router(auth_router)
    app.include_router(tasks_router)
    return app
