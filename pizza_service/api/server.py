from __future__ import annotations

import traceback
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from pizza_service import __version__
from pizza_service.auth.deps import get_repo, optional_user, require_auth
from pizza_service.auth.tokens import issue_token
from pizza_service.config import Config, load_config
from pizza_service.db import Database
from pizza_service.errors import StatusCodeError, UnauthorizedError, ValidationError
from pizza_service.factory.client import FactoryError, order_pizzas
from pizza_service.models import AuthUser, Role, is_role
from pizza_service.repository import Repository


def _debug(msg: str) -> None:
    print(f"[api] {msg}")


router = APIRouter()


def _set_auth(repo: Repository, cfg: Config, user: Dict[str, Any]) -> str:
    """Issue a session token for `user` and store its signature."""
    token = issue_token(secret=cfg.AUTH_JWT_SECRET, user=user)
    repo.login_user(int(user["id"]), token)
    return token


def _forbidden(message: str = "unauthorized") -> UnauthorizedError:
    return UnauthorizedError(message, 403)


# -----------------------------
# Health
# -----------------------------


@router.get("/")
def welcome() -> Dict[str, Any]:
    return {"message": "welcome to JWT Pizza", "version": __version__}


@router.get("/health")
def health() -> Dict[str, Any]:
    return {"status": "ok"}


# -----------------------------
# Auth
# -----------------------------


class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


@router.post("/api/auth")
def auth_register(
    payload: RegisterRequest,
    request: Request,
    repo: Repository = Depends(get_repo),
) -> Dict[str, Any]:
    if not payload.name or not payload.email or not payload.password:
        raise ValidationError("name, email, and password are required")

    user = repo.add_user(
        {
            "name": payload.name,
            "email": payload.email,
            "password": payload.password,
            "roles": [{"role": Role.DINER.value}],
        }
    )
    token = _set_auth(repo, request.app.state.cfg, user)
    return {"user": user, "token": token}


@router.put("/api/auth")
def auth_login(
    payload: LoginRequest,
    request: Request,
    repo: Repository = Depends(get_repo),
) -> Dict[str, Any]:
    user = repo.get_user(payload.email, payload.password)
    token = _set_auth(repo, request.app.state.cfg, user)
    return {"user": user, "token": token}


@router.delete("/api/auth")
def auth_logout(
    user: AuthUser = Depends(require_auth),
    repo: Repository = Depends(get_repo),
) -> Dict[str, Any]:
    repo.logout_user(user.token)
    return {"message": "logout successful"}


# -----------------------------
# Users
# -----------------------------


class UpdateUserRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


@router.get("/api/user/me")
def user_me(user: AuthUser = Depends(require_auth)) -> Dict[str, Any]:
    return user.public()


@router.get("/api/user")
def user_list(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    name: str = Query("*"),
    user: AuthUser = Depends(require_auth),
    repo: Repository = Depends(get_repo),
) -> Dict[str, Any]:
    if not is_role(user, Role.ADMIN):
        raise _forbidden()
    result = repo.get_users(user, page, limit, name)
    return {"users": result["users"], "more": result["more"]}


@router.put("/api/user/{user_id}")
def user_update(
    user_id: int,
    payload: UpdateUserRequest,
    request: Request,
    user: AuthUser = Depends(require_auth),
    repo: Repository = Depends(get_repo),
) -> Dict[str, Any]:
    if user.id != user_id and not is_role(user, Role.ADMIN):
        raise _forbidden()

    updated = repo.update_user(user_id, payload.name, payload.email, payload.password)
    token = _set_auth(repo, request.app.state.cfg, updated)
    return {"user": updated, "token": token}


@router.delete("/api/user/{user_id}", status_code=204)
def user_delete(
    user_id: int,
    user: AuthUser = Depends(require_auth),
    repo: Repository = Depends(get_repo),
) -> Response:
    if user.id != user_id and not is_role(user, Role.ADMIN):
        raise _forbidden()

    repo.delete_user(user_id)
    return Response(status_code=204)


# -----------------------------
# Menu / orders
# -----------------------------


class MenuItemRequest(BaseModel):
    title: str
    description: str
    image: str
    price: float


class OrderItemRequest(BaseModel):
    menuId: int
    description: Optional[str] = None
    price: Optional[float] = None


class OrderRequest(BaseModel):
    franchiseId: int
    storeId: int
    items: List[OrderItemRequest] = []


@router.get("/api/order/menu")
def order_menu(repo: Repository = Depends(get_repo)) -> List[Dict[str, Any]]:
    return repo.get_menu()


@router.put("/api/order/menu")
def order_add_menu_item(
    payload: MenuItemRequest,
    user: AuthUser = Depends(require_auth),
    repo: Repository = Depends(get_repo),
) -> List[Dict[str, Any]]:
    if not is_role(user, Role.ADMIN):
        raise _forbidden("unable to add menu item")
    repo.add_menu_item(payload.model_dump())
    return repo.get_menu()


@router.get("/api/order")
def order_list(
    page: int = Query(1, ge=1),
    user: AuthUser = Depends(require_auth),
    repo: Repository = Depends(get_repo),
) -> Dict[str, Any]:
    return repo.get_orders(user, page)


@router.post("/api/order")
def order_create(
    payload: OrderRequest,
    request: Request,
    user: AuthUser = Depends(require_auth),
    repo: Repository = Depends(get_repo),
) -> Any:
    cfg: Config = request.app.state.cfg
    order = repo.add_diner_order(user, payload.model_dump())

    try:
        result = order_pizzas(
            cfg.FACTORY_URL,
            cfg.FACTORY_API_KEY,
            diner=user.public(),
            order=order,
            timeout=cfg.FACTORY_TIMEOUT_SECONDS,
        )
    except FactoryError as e:
        return JSONResponse(
            status_code=500,
            content={"message": "Failed to fulfill order at factory", "followLinkToEndChaos": e.report_url},
        )

    return {"order": order, "followLinkToEndChaos": result.get("reportUrl"), "jwt": result.get("jwt")}


# -----------------------------
# Franchises / stores
# -----------------------------


class FranchiseAdminRef(BaseModel):
    email: str


class FranchiseRequest(BaseModel):
    name: str
    admins: List[FranchiseAdminRef] = []


class StoreRequest(BaseModel):
    name: str


def _can_manage_franchise(repo: Repository, user: AuthUser, franchise_id: int) -> bool:
    if is_role(user, Role.ADMIN):
        return True
    franchise = repo.get_franchise({"id": franchise_id})
    return any(int(a["id"]) == user.id for a in franchise.get("admins") or [])


@router.get("/api/franchise")
def franchise_list(
    page: int = Query(0, ge=0),
    limit: int = Query(10, ge=1, le=100),
    name: str = Query("*"),
    user: Optional[AuthUser] = Depends(optional_user),
    repo: Repository = Depends(get_repo),
) -> Dict[str, Any]:
    franchises, more = repo.get_franchises(user, page, limit, name)
    return {"franchises": franchises, "more": more}


@router.get("/api/franchise/{user_id}")
def franchise_for_user(
    user_id: int,
    user: AuthUser = Depends(require_auth),
    repo: Repository = Depends(get_repo),
) -> List[Dict[str, Any]]:
    if user.id == user_id or is_role(user, Role.ADMIN):
        return repo.get_user_franchises(user_id)
    return []


@router.post("/api/franchise")
def franchise_create(
    payload: FranchiseRequest,
    user: AuthUser = Depends(require_auth),
    repo: Repository = Depends(get_repo),
) -> Dict[str, Any]:
    if not is_role(user, Role.ADMIN):
        raise _forbidden("unable to create a franchise")
    return repo.create_franchise(payload.model_dump())


@router.delete("/api/franchise/{franchise_id}")
def franchise_delete(
    franchise_id: int,
    user: AuthUser = Depends(require_auth),
    repo: Repository = Depends(get_repo),
) -> Dict[str, Any]:
    if not is_role(user, Role.ADMIN):
        raise _forbidden("unable to delete a franchise")
    repo.delete_franchise(franchise_id)
    return {"message": "franchise deleted"}


@router.post("/api/franchise/{franchise_id}/store")
def store_create(
    franchise_id: int,
    payload: StoreRequest,
    user: AuthUser = Depends(require_auth),
    repo: Repository = Depends(get_repo),
) -> Dict[str, Any]:
    if not _can_manage_franchise(repo, user, franchise_id):
        raise _forbidden("unable to create a store")
    return repo.create_store(franchise_id, payload.model_dump())


@router.delete("/api/franchise/{franchise_id}/store/{store_id}")
def store_delete(
    franchise_id: int,
    store_id: int,
    user: AuthUser = Depends(require_auth),
    repo: Repository = Depends(get_repo),
) -> Dict[str, Any]:
    if not _can_manage_franchise(repo, user, franchise_id):
        raise _forbidden("unable to delete a store")
    repo.delete_store(franchise_id, store_id)
    return {"message": "store deleted"}


# -----------------------------
# App
# -----------------------------


def _status_code_error_handler(request: Request, exc: StatusCodeError) -> JSONResponse:
    body: Dict[str, Any] = {"message": exc.message}
    cfg = getattr(request.app.state, "cfg", None)
    if cfg is not None and cfg.EXPOSE_ERROR_STACK:
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed bodies and query strings use the same {"message"} shape as ValidationError.
    problems = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        problems.append(f"{'.'.join(loc) or 'request'}: {err.get('msg', 'invalid')}")
    return _status_code_error_handler(request, ValidationError("; ".join(problems) or "invalid request"))


def create_app(cfg: Config | None = None) -> FastAPI:
    cfg = cfg or load_config()
    app = FastAPI(title="JWT Pizza Service", version=__version__)
    app.state.cfg = cfg

    # CORS is mainly needed for local development (Vite on :5173 -> API on :3000).
    cors_origins = [o.strip() for o in (cfg.CORS_ALLOW_ORIGINS or "").split(",") if o.strip()]
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(StatusCodeError, _status_code_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.include_router(router)

    @app.on_event("startup")
    def _on_startup() -> None:
        # Schema creation + seeding happens exactly once, here.
        db = Database(cfg)
        db.ready()
        app.state.db = db
        app.state.repo = Repository(db)
        _debug(f"Ready (db dialect={db.dialect})")

    @app.on_event("shutdown")
    def _on_shutdown() -> None:
        db = getattr(app.state, "db", None)
        if db is not None:
            db.close()

    return app


app = create_app()
