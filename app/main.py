# app/main.py
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional
from urllib.parse import quote
from zoneinfo import ZoneInfo

from fastapi import Depends, FastAPI, Form, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response, StreamingResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from google.api_core.exceptions import NotFound
from starlette.middleware.sessions import SessionMiddleware

from app.config import configure_logging, get_db, get_firestore_client, get_settings
from app.models import (
    DateRangeRequest,
    DeleteRangeResult,
    ExportRequest,
    PackagePage,
    RegisterDeviceRequest,
    RenameDeviceRequest,
    SessionUser,
)
from app.security import (
    SESSION_ID,
    SESSION_TOKEN,
    LoginRequired,
    end_session,
    get_identity_client,
    require_page_user,
    require_user,
    safe_next,
    session_id,
    session_user,
    start_session,
)
from policies.date_range import DateRangeError
from services.admin import delete_packages_in_range
from services.auth import AuthError, IdentityClient
from services.charts import carrier_share, load_scans_over_time
from services.devices import DeviceLabels
from services.export import ExportEmptyError, export_filename, export_packages_csv
from services.kpi import breakdown_rows, fetch_kpi_data, format_number
from services.logs import log_action
from services.packages import list_available_carriers, list_packages
from services.rate_limit import check_login_rate_limit
from services.realtime import PackageChangeFeed, event_stream
from services.sessions import delete_session, get_page_state, save_page_state

logger = logging.getLogger(__name__)

settings = get_settings()

APP_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = APP_DIR / "templates"
STATIC_DIR = APP_DIR / "static"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

SESSION_MAX_AGE = 8 * 60 * 60


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    feed = None
    if settings.enable_realtime:
        try:
            db = get_firestore_client()
            labels = DeviceLabels(db)
            app.state.labels = labels
            feed = PackageChangeFeed(db, labels, tz_name=settings.timezone)
            feed.start()
        except Exception as e:
            logger.error("real-time updates disabled: %r", e)
            feed = None
    app.state.feed = feed

    yield

    if feed is not None:
        feed.stop()


app = FastAPI(title="Package Scan Dashboard", lifespan=lifespan)
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.session_secret,
    max_age=SESSION_MAX_AGE,
    same_site="lax",
)
app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")


@app.exception_handler(LoginRequired)
async def login_required_handler(request: Request, exc: LoginRequired):
    return RedirectResponse(f"/login?next={quote(exc.next_path)}", status_code=303)


def get_labels(request: Request, db=Depends(get_db)) -> DeviceLabels:
    labels = getattr(request.app.state, "labels", None)
    if labels is None or labels.db is not db:
        labels = DeviceLabels(db)
        request.app.state.labels = labels
    return labels


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _bad_request(e: DateRangeError) -> HTTPException:
    return HTTPException(status_code=400, detail={"error": e.code, "message": e.message})


def _now() -> datetime:
    return datetime.now(ZoneInfo(settings.timezone))


# ---------------------------
# Login / logout
# ---------------------------
@app.get("/login", response_class=HTMLResponse)
def login_page(request: Request, next: Optional[str] = None):
    target = safe_next(next)
    if session_user(request) is not None:
        return RedirectResponse(target, status_code=303)
    return templates.TemplateResponse(
        request, "login.html", {"next": target, "error": None, "email": "", "mode": "login"}
    )


@app.post("/login", response_class=HTMLResponse)
def login_submit(
    request: Request,
    email: str = Form(default=""),
    password: str = Form(default=""),
    mode: str = Form(default="login"),
    next: str = Form(default="/"),
    db=Depends(get_db),
    identity: IdentityClient = Depends(get_identity_client),
):
    target = safe_next(next)
    context = {"next": target, "email": email, "mode": mode}

    if not email or not password:
        context["error"] = "Please provide both email and password"
        return templates.TemplateResponse(request, "login.html", context, status_code=400)

    ip = _client_ip(request)
    rl = check_login_rate_limit(db, ip=ip, limit_per_min=settings.login_attempts_per_minute)
    if not rl["allowed"]:
        log_action(db, "anonymous", "blocked_login", {
            "reason": "rate_limited", "ip": ip, "count": rl["count"], "limit": rl["limit"],
        })
        context["error"] = "Too many unsuccessful login attempts. Please try again later."
        return templates.TemplateResponse(request, "login.html", context, status_code=429)

    try:
        if mode == "register":
            signed_in = identity.sign_up(email, password)
        else:
            signed_in = identity.sign_in(email, password)
    except AuthError as e:
        context["error"] = e.message
        return templates.TemplateResponse(request, "login.html", context, status_code=400)

    user = start_session(request, signed_in)
    log_action(db, user.id, "register" if mode == "register" else "login", {"email": user.email, "ip": ip})
    return RedirectResponse(target, status_code=303)


@app.post("/logout")
def logout(request: Request, db=Depends(get_db)):
    user = session_user(request)
    if user is not None:
        log_action(db, user.id, "logout", {"email": user.email})
    delete_session(db, request.session.get(SESSION_ID))
    end_session(request)
    return RedirectResponse("/login", status_code=303)


@app.get("/api/session")
def current_session(request: Request, user: SessionUser = Depends(require_user)):
    return {
        "isAuthenticated": True,
        "user": user.model_dump(),
        "token": request.session.get(SESSION_TOKEN),
    }


# ---------------------------
# Pages
# ---------------------------
@app.get("/", response_class=HTMLResponse)
def dashboard(request: Request, user: SessionUser = Depends(require_page_user), db=Depends(get_db)):
    kpi = fetch_kpi_data(db, now=_now(), tz_name=settings.timezone)
    return templates.TemplateResponse(request, "dashboard.html", {
        "user": user,
        "kpi": kpi,
        "today_rows": breakdown_rows(kpi.today_carrier_breakdown),
        "month_rows": breakdown_rows(kpi.month_carrier_breakdown),
        "format_number": format_number,
        "page_size": settings.page_size,
        "realtime": getattr(request.app.state, "feed", None) is not None,
    })


@app.get("/admin", response_class=HTMLResponse)
def admin_page(request: Request, user: SessionUser = Depends(require_page_user)):
    return templates.TemplateResponse(request, "admin.html", {"user": user})


# ---------------------------
# Scan table
# ---------------------------
@app.get("/api/packages", response_model=PackagePage)
def packages(
    request: Request,
    tracking: str = "",
    carrier: str = "all",
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, le=200),
    sort: str = "timestamp",
    direction: str = "desc",
    user: SessionUser = Depends(require_user),
    db=Depends(get_db),
    labels: DeviceLabels = Depends(get_labels),
):
    sid = session_id(request)
    state = get_page_state(db, sid)
    result, state = list_packages(
        db,
        tracking=tracking,
        carrier=carrier,
        page=page,
        page_size=page_size or settings.page_size,
        sort=sort,
        direction=direction,
        state=state,
        labels=labels,
        tz_name=settings.timezone,
    )
    save_page_state(db, sid, state)
    return result


@app.get("/api/carriers")
def carriers(user: SessionUser = Depends(require_user), db=Depends(get_db)):
    try:
        return {"carriers": list_available_carriers(db)}
    except Exception as e:
        logger.error("error fetching carriers: %r", e)
        raise HTTPException(
            status_code=502,
            detail={"error": "carriers_unavailable", "message": f"Failed to load carriers: {e}"},
        )


# ---------------------------
# KPIs and charts
# ---------------------------
@app.get("/api/kpis")
def kpis(user: SessionUser = Depends(require_user), db=Depends(get_db)):
    kpi = fetch_kpi_data(db, now=_now(), tz_name=settings.timezone)
    return {
        "kpi": kpi.model_dump(),
        "today_rows": [r.model_dump() for r in breakdown_rows(kpi.today_carrier_breakdown)],
        "month_rows": [r.model_dump() for r in breakdown_rows(kpi.month_carrier_breakdown)],
    }


@app.get("/api/charts/scans")
def chart_scans(
    range: str = Query("daily", pattern="^(daily|monthly)$"),
    user: SessionUser = Depends(require_user),
    db=Depends(get_db),
):
    try:
        return load_scans_over_time(db, range).model_dump()
    except Exception as e:
        logger.error("error loading time chart data: %r", e)
        raise HTTPException(
            status_code=502,
            detail={"error": "chart_unavailable", "message": "Failed to load chart data."},
        )


@app.get("/api/charts/share")
def chart_share(
    timeframe: str = Query("today", pattern="^(today|month)$"),
    user: SessionUser = Depends(require_user),
    db=Depends(get_db),
):
    kpi = fetch_kpi_data(db, now=_now(), tz_name=settings.timezone)
    return {"timeframe": timeframe, "items": [s.model_dump() for s in carrier_share(kpi, timeframe)]}


# ---------------------------
# Export / admin
# ---------------------------
@app.post("/api/export")
def export_csv(
    req: ExportRequest,
    user: SessionUser = Depends(require_user),
    db=Depends(get_db),
    labels: DeviceLabels = Depends(get_labels),
):
    try:
        content, count = export_packages_csv(db, req.start_date, req.end_date, req.carrier, labels)
    except DateRangeError as e:
        raise _bad_request(e)
    except ExportEmptyError as e:
        raise HTTPException(status_code=404, detail={"error": e.code, "message": e.message})
    except Exception as e:
        logger.error("error exporting CSV: %r (range=%s..%s carrier=%s)", e, req.start_date, req.end_date, req.carrier)
        raise HTTPException(
            status_code=502,
            detail={"error": "export_failed", "message": f"Failed to export CSV: {e}"},
        )

    log_action(db, user.id, "export", {
        "start_date": str(req.start_date), "end_date": str(req.end_date),
        "carrier": req.carrier, "rows": count,
    })
    filename = export_filename(_now().date())
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Export-Count": str(count),
        },
    )


@app.post("/api/admin/delete-range", response_model=DeleteRangeResult)
def delete_range(req: DateRangeRequest, user: SessionUser = Depends(require_user), db=Depends(get_db)):
    try:
        deleted = delete_packages_in_range(db, req.start_date, req.end_date, tz_name=settings.timezone)
    except DateRangeError as e:
        raise _bad_request(e)
    except Exception as e:
        logger.error("error deleting packages: %r", e)
        raise HTTPException(
            status_code=502,
            detail={"error": "delete_failed", "message": f"Error deleting packages: {e}"},
        )

    log_action(db, user.id, "delete_range", {
        "start_date": str(req.start_date), "end_date": str(req.end_date), "deleted": deleted,
    })
    return DeleteRangeResult(deleted=deleted, message=f"Successfully deleted {deleted} packages")


# ---------------------------
# Devices
# ---------------------------
@app.get("/api/devices")
def devices(user: SessionUser = Depends(require_user), labels: DeviceLabels = Depends(get_labels)):
    return {"devices": [d.model_dump() for d in labels.all_devices()]}


@app.post("/api/devices/register")
def register_device(
    req: RegisterDeviceRequest,
    user: SessionUser = Depends(require_user),
    labels: DeviceLabels = Depends(get_labels),
):
    try:
        label = labels.register(req.device_id.strip())
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"error": "invalid_device", "message": str(e)})
    except Exception as e:
        logger.error("error registering device %s: %r", req.device_id, e)
        raise HTTPException(
            status_code=502,
            detail={"error": "device_update_failed", "message": f"Failed to register device: {e}"},
        )
    return {"deviceId": req.device_id, "label": label}


@app.put("/api/devices/{device_id}")
def rename_device(
    device_id: str,
    req: RenameDeviceRequest,
    user: SessionUser = Depends(require_user),
    labels: DeviceLabels = Depends(get_labels),
):
    try:
        labels.rename(device_id, req.label.strip())
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"error": "invalid_device", "message": str(e)})
    except NotFound:
        raise HTTPException(
            status_code=404,
            detail={"error": "device_not_found", "message": f"No device registered with ID {device_id}"},
        )
    except Exception as e:
        logger.error("error renaming device %s: %r", device_id, e)
        raise HTTPException(
            status_code=502,
            detail={"error": "device_update_failed", "message": f"Failed to rename device: {e}"},
        )
    return {"deviceId": device_id, "label": req.label.strip()}


# ---------------------------
# Real-time stream
# ---------------------------
@app.get("/api/events")
async def events(request: Request, user: SessionUser = Depends(require_user)):
    feed: Optional[PackageChangeFeed] = getattr(request.app.state, "feed", None)
    if feed is None:
        raise HTTPException(
            status_code=503,
            detail={"error": "realtime_unavailable", "message": "Real-time updates are not enabled."},
        )
    return StreamingResponse(
        event_stream(request, feed),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.get("/health")
def health():
    return {"status": "ok"}
