import logging
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response

import config
import database
from admin import ADMIN_ROLE, validate_admin_secret_key
from auth_service import AuthClient, user_directory
from errors import AuthenticationError, BackendError, ValidationFailure
from fallback_store import FallbackStore
from profile_resolver import ProfileResolver
from reports import (
    PhotoUpload,
    admin_reports,
    analytics,
    backend_status,
    dashboard,
    edit_report,
    form_config,
    leaderboard,
    my_reports,
    set_report_status,
    submit_report,
    update_role,
)
from route_guard import Outcome, Requirement, RouteDenied, decide
from schemas import Notice, Profile, ReportEdit, ReportStatusUpdate, RoleUpdate, SigninRequest, SignupRequest
from session_store import SessionStore

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


# ---------- Session helpers ----------

def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def get_session_store(request: Request, authorization: Optional[str] = Header(None)):
    state = request.app.state
    auth = AuthClient(state.directory, bearer_token(authorization))
    store = SessionStore(auth, ProfileResolver(state.fallback, state.backend), state.fallback)
    with store:
        yield store


def guard(requirement: Requirement):
    def dependency(store: SessionStore = Depends(get_session_store)) -> SessionStore:
        decision = decide(store.loading, store.identity, store.profile, requirement)
        if decision.outcome is not Outcome.RENDER:
            raise RouteDenied(decision)
        return store
    return dependency


public_only = guard(Requirement.PUBLIC_ONLY)
auth_required = guard(Requirement.AUTH_REQUIRED)
admin_required = guard(Requirement.ADMIN_REQUIRED)


def create_app(backend=None, fallback=None, directory=None) -> FastAPI:
    app = FastAPI(title=config.APP_NAME)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.backend = backend if backend is not None else database.mongo_backend(database.db)
    app.state.fallback = fallback if fallback is not None else FallbackStore()
    app.state.directory = directory if directory is not None else user_directory(database.db)

    @app.exception_handler(RouteDenied)
    def route_denied(request: Request, exc: RouteDenied):
        if exc.decision.outcome is Outcome.LOADING:
            return JSONResponse(status_code=202, content={"loading": True})
        return RedirectResponse(url=exc.decision.location, status_code=307)

    @app.exception_handler(ValidationFailure)
    def validation_failed(request: Request, exc: ValidationFailure):
        return JSONResponse(status_code=400, content={"detail": exc.description, "notice": exc.notice().model_dump()})

    # ---------- Basic routes ----------

    @app.get("/")
    def root(store: SessionStore = Depends(public_only)):
        return {"message": f"{config.APP_NAME} running"}

    @app.get("/test")
    def test_database(request: Request):
        return backend_status(request.app.state.backend)

    # ---------- Auth ----------

    @app.get("/auth")
    def auth_page(store: SessionStore = Depends(public_only)):
        return {"roles": ["community", ADMIN_ROLE], "admin_secret_required_for": ADMIN_ROLE}

    @app.post("/auth/signup")
    def signup(req: SignupRequest, request: Request, store: SessionStore = Depends(public_only)):
        if req.role == ADMIN_ROLE:
            if not req.admin_secret_key:
                raise HTTPException(status_code=400, detail="Admin secret key is required for authority accounts")
            if not validate_admin_secret_key(req.admin_secret_key):
                raise HTTPException(status_code=400, detail="Invalid admin secret key")

        try:
            session = store.auth.sign_up(req.email, req.password, {"full_name": req.full_name, "role": req.role})
        except AuthenticationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except BackendError as e:
            logger.error("Signup failed: %s", e)
            raise HTTPException(status_code=503, detail="Auth service unavailable")

        profile = Profile(id=session.user.id, full_name=req.full_name or None, role=req.role, points=0)
        backend = request.app.state.backend
        request.app.state.fallback.upsert_profile(profile.id, req.full_name, req.role)
        if backend.configured:
            try:
                backend.profiles.create(profile)
                logger.info("Profile created during signup for %s", profile.id)
            except BackendError as e:
                logger.error("Error creating profile: %s", e)

        return {
            "session": session,
            "profile": store.reload_profile() or profile,
            "notice": Notice(title="Account created", description="Welcome to Mangrove Watch!"),
        }

    @app.post("/auth/signin")
    def signin(req: SigninRequest, store: SessionStore = Depends(public_only)):
        try:
            session = store.auth.sign_in(req.email, req.password)
        except AuthenticationError as e:
            raise HTTPException(status_code=401, detail=str(e))
        except BackendError as e:
            logger.error("Signin failed: %s", e)
            raise HTTPException(status_code=503, detail="Auth service unavailable")
        return {"session": session, "profile": store.profile}

    @app.post("/auth/refresh")
    def refresh(store: SessionStore = Depends(auth_required)):
        try:
            session = store.auth.refresh_session()
        except AuthenticationError as e:
            raise HTTPException(status_code=401, detail=str(e))
        return {"session": session}

    @app.post("/auth/signout")
    def signout(store: SessionStore = Depends(get_session_store)):
        try:
            store.auth.sign_out()
        except BackendError as e:
            logger.error("Signout failed: %s", e)
        return {"ok": True, "state": store.state.value}

    @app.get("/me")
    def me(store: SessionStore = Depends(auth_required)):
        return {"user": store.identity, "profile": store.profile}

    @app.patch("/me/role")
    def change_role(body: RoleUpdate, request: Request, store: SessionStore = Depends(auth_required)):
        # promotion to authority is gated by the same pass-phrase as signup
        if body.role == ADMIN_ROLE and not validate_admin_secret_key(body.admin_secret_key):
            raise HTTPException(status_code=400, detail="Invalid admin secret key")
        state = request.app.state
        notice = update_role(state.fallback, state.backend, store.identity, body.role)
        return {"profile": store.reload_profile(), "notice": notice}

    # ---------- Community pages ----------

    @app.get("/dashboard")
    def dashboard_page(request: Request, store: SessionStore = Depends(auth_required)):
        state = request.app.state
        return dashboard(state.fallback, state.backend, store.identity, store.profile)

    @app.get("/report")
    def report_form(store: SessionStore = Depends(auth_required)):
        return form_config()

    @app.post("/report")
    def report_incident(
        request: Request,
        title: str = Form(""),
        description: str = Form(""),
        latitude: Optional[float] = Form(None),
        longitude: Optional[float] = Form(None),
        photo: Optional[UploadFile] = File(None),
        store: SessionStore = Depends(auth_required),
    ):
        upload = None
        if photo is not None:
            upload = PhotoUpload(filename=photo.filename or "", content_type=photo.content_type, data=photo.file.read())
        state = request.app.state
        report, notice = submit_report(
            state.fallback, state.backend, store.identity, title, description, upload,
            latitude=latitude, longitude=longitude,
        )
        return {"report": report, "notice": notice}

    @app.get("/reports")
    def reports_page(request: Request, status: str = "all", q: str = "", store: SessionStore = Depends(auth_required)):
        state = request.app.state
        return my_reports(state.fallback, state.backend, store.identity, status=status, search=q)

    @app.patch("/reports/{report_id}")
    def update_report(report_id: str, body: ReportEdit, request: Request, store: SessionStore = Depends(auth_required)):
        state = request.app.state
        report, notice = edit_report(state.fallback, state.backend, store.identity, report_id, body)
        return {"report": report, "notice": notice}

    @app.get("/leaderboard")
    def leaderboard_page(request: Request, store: SessionStore = Depends(public_only)):
        return leaderboard(request.app.state.backend)

    @app.get("/storage/{bucket}/{filename}")
    def photo(bucket: str, filename: str, request: Request):
        storage = request.app.state.backend.storage
        if bucket != config.PHOTO_BUCKET or not request.app.state.backend.configured:
            raise HTTPException(status_code=404, detail="Not found")
        try:
            found = storage.download(filename)
        except BackendError as e:
            logger.error("Error reading photo %s: %s", filename, e)
            raise HTTPException(status_code=503, detail="Storage unavailable")
        if found is None:
            raise HTTPException(status_code=404, detail="Not found")
        data, content_type = found
        return Response(content=data, media_type=content_type or "application/octet-stream")

    # ---------- Authority pages ----------

    @app.get("/admin")
    def admin_page(request: Request, status: str = "all", q: str = "", date: str = "all",
                   store: SessionStore = Depends(admin_required)):
        state = request.app.state
        return admin_reports(state.fallback, state.backend, status=status, search=q, date=date)

    @app.post("/admin/reports/{report_id}/status")
    def review_report(report_id: str, body: ReportStatusUpdate, request: Request,
                      store: SessionStore = Depends(admin_required)):
        state = request.app.state
        return set_report_status(state.fallback, state.backend, report_id, body.status)

    @app.get("/analytics")
    def analytics_page(request: Request, timeframe: str = "month", store: SessionStore = Depends(admin_required)):
        state = request.app.state
        return analytics(state.fallback, state.backend, timeframe)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
