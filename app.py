# app.py
from flask import (
    Flask, request, redirect, url_for,
    session, jsonify, abort, send_from_directory
)
import logging
import os
import secrets
from datetime import date, datetime
from functools import wraps
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from flask_login import (
    LoginManager,
    UserMixin,
    login_user,
    logout_user,
    current_user,
    login_required,
)

from tracker import assignments, catalog, daily, dashboard, history, personal
from tracker.auth import Authenticator, normalize_email
from tracker.config import (
    CALENDAR_MONTHS,
    DATA_DIR,
    DATABASE_URL,
    DEFAULT_ROLE,
    HISTORY_MONTHS,
    MAX_PHOTO_BYTES,
    RESET_TIMEZONE,
    RESET_TRIGGER_TOKEN,
    ROLE_EMPLOYEE,
    ROLE_MANAGER,
    ROLES,
    SNAPSHOT_SESSION_KEY,
    UPLOAD_FOLDER,
)
from tracker.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PhotoUploadError,
    StoreUnavailable,
    WriteError,
)
from tracker.models import User
from tracker.offline import QueueingStore
from tracker.reset import reset_target_date, run_reset
from tracker.session import SessionResolver, make_snapshot
from tracker.storage import LocalBlobStorage, validate_photo
from tracker.store import DocumentStore

LOGGER = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = os.getenv("SECRET_KEY", "dev-only-key")
app.config.update(
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_SECURE=os.getenv("FLASK_ENV") == "production",
    MAX_CONTENT_LENGTH=MAX_PHOTO_BYTES + 1024 * 1024,
    RESET_TRIGGER_TOKEN=RESET_TRIGGER_TOKEN,
)

login_manager = LoginManager()
login_manager.init_app(app)

DEBUG = os.getenv("FLASK_ENV") != "production"

os.makedirs(DATA_DIR, exist_ok=True)

# ------------------------------- Backends -------------------------------
STORE = QueueingStore(DocumentStore(DATABASE_URL))
BLOBS = LocalBlobStorage(UPLOAD_FOLDER)
TEMPLATE_CACHE = catalog.TEMPLATE_CACHE
RESOLVER = SessionResolver(STORE)
AUTHENTICATOR = Authenticator(STORE)


# ------------------------------- Auth model -------------------------------
class AppUser(UserMixin):
    def __init__(self, uid: str, email: str = "", role: str = DEFAULT_ROLE, display_name: str | None = None):
        self.id = uid
        self.uid = uid
        self.email = email
        self.role = role if role in ROLES else DEFAULT_ROLE
        self.display_name = display_name or uid

    @property
    def is_manager(self) -> bool:
        return self.role == ROLE_MANAGER

    @classmethod
    def from_user(cls, user: User):
        return cls(uid=user.uid, email=user.email, role=user.role, display_name=user.display_name)


def remember_snapshot(user: User) -> None:
    """Keep the session snapshot in step with the resolved user."""
    current = session.get(SNAPSHOT_SESSION_KEY)
    fresh = make_snapshot(user)
    if isinstance(current, dict) and all(current.get(k) == fresh[k] for k in ("uid", "email", "role", "displayName")):
        return
    session[SNAPSHOT_SESSION_KEY] = fresh


@login_manager.user_loader
def load_logged_in_user(user_id: str):
    snapshot = session.get(SNAPSHOT_SESSION_KEY)
    email = snapshot.get("email", "") if isinstance(snapshot, dict) else ""
    user = RESOLVER.resolve(user_id, email=email, snapshot=snapshot)
    remember_snapshot(user)
    return AppUser.from_user(user)


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Please log in first."}), 401


def roles_required(*roles: str):
    """Allow the view only for users whose role is in ``roles``."""
    unknown = set(roles) - set(ROLES)
    if unknown:
        raise ValueError(f"Unknown role(s): {', '.join(sorted(unknown))}")

    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                return login_manager.unauthorized()
            if current_user.role not in roles:
                return jsonify({"error": "Not authorized"}), 403
            return f(*args, **kwargs)
        return wrapper
    return decorator


manager_required = roles_required(ROLE_MANAGER)
employee_required = roles_required(ROLE_EMPLOYEE)


def ensure_can_view(user_id: str) -> None:
    if not current_user.is_manager and current_user.id != user_id:
        abort(403)


# ------------------------------- CSRF -------------------------------
CSRF_EXEMPT = {"trigger_reset"}


def csrf_token():
    return session.get("_csrf", "")


@app.before_request
def ensure_csrf_token():
    session["_csrf"] = session.get("_csrf") or secrets.token_urlsafe(32)
    if app.config.get("TESTING") or request.endpoint in CSRF_EXEMPT:
        return
    if request.method in {"POST", "PUT", "PATCH", "DELETE"}:
        token = session.get("_csrf")
        submitted = request.headers.get("X-CSRFToken") or request.form.get("csrf_token")
        if not token or not submitted or not secrets.compare_digest(submitted, token):
            abort(400)


# ------------------------------- Errors -------------------------------
def _error(message: str, status: int):
    return jsonify({"error": message}), status


@app.errorhandler(ValueError)
def handle_value_error(exc):
    return _error(str(exc), 400)


@app.errorhandler(AuthenticationError)
def handle_auth_error(exc):
    return _error(str(exc), 401)


@app.errorhandler(NotFoundError)
def handle_not_found(exc):
    return _error(str(exc), 404)


@app.errorhandler(ConflictError)
def handle_conflict(exc):
    return _error(str(exc), 409)


@app.errorhandler(PhotoUploadError)
def handle_photo_upload(exc):
    return _error(str(exc), 502)


@app.errorhandler(StoreUnavailable)
def handle_store_unavailable(exc):
    LOGGER.warning("Request %s failed while the store was unreachable: %s", request.path, exc)
    return _error("The service is offline. Please try again.", 503)


@app.errorhandler(WriteError)
def handle_write_error(exc):
    LOGGER.error("Write failed for %s: %s", request.path, exc)
    return _error("Could not save your changes. Please try again.", 503)


# ------------------------------- Helpers -------------------------------
def payload() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def as_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "on", "yes"}


def local_today() -> date:
    return datetime.now(ZoneInfo(RESET_TIMEZONE)).date()


def requested_day() -> str:
    raw = request.args.get("date")
    if not raw:
        return local_today().isoformat()
    parsed = history.parse_day(raw)
    if parsed is None:
        raise ValueError("Invalid date; expected YYYY-MM-DD")
    return parsed.isoformat()


def uploaded_photo() -> Optional[bytes]:
    file = request.files.get("photo")
    if file is None or not file.filename:
        return None
    content = file.read()
    validate_photo(file.filename, file.mimetype, len(content))
    return content


def home_endpoint(role: str) -> str:
    return "manager_dashboard" if role == ROLE_MANAGER else "my_tasks"


@app.get("/healthz")
def healthz():
    return {"ok": True, "online": STORE.online}, 200


@app.get("/api/csrf")
def get_csrf():
    return {"csrfToken": csrf_token()}


# ------------------------------- Auth -------------------------------
@app.route("/register", methods=["POST"])
def register():
    data = payload()
    user = AUTHENTICATOR.register(
        data.get("email", ""),
        data.get("password", ""),
        display_name=data.get("displayName"),
    )
    RESOLVER.remember(user)
    login_user(AppUser.from_user(user))
    session[SNAPSHOT_SESSION_KEY] = make_snapshot(user)
    return jsonify({"ok": True, "user": user.to_dict(), "redirect": url_for(home_endpoint(user.role))}), 201


@app.route("/login", methods=["POST"])
def login():
    data = payload()
    email = normalize_email(data.get("email"))
    uid = AUTHENTICATOR.authenticate(email, data.get("password", ""))
    user = RESOLVER.resolve(uid, email=email, snapshot=session.get(SNAPSHOT_SESSION_KEY), refresh=True)
    login_user(AppUser.from_user(user))
    session[SNAPSHOT_SESSION_KEY] = make_snapshot(user)
    LOGGER.info("User %s logged in as %s", uid, user.role)
    return jsonify({"ok": True, "user": user.to_dict(), "redirect": url_for(home_endpoint(user.role))})


@app.route("/logout", methods=["POST"])
@login_required
def logout():
    RESOLVER.forget(current_user.id)
    logout_user()
    session.clear()
    return jsonify({"ok": True})


@app.route("/")
@login_required
def index():
    return redirect(url_for(home_endpoint(current_user.role)))


@app.get("/api/me")
@login_required
def me():
    return jsonify({
        "uid": current_user.id,
        "email": current_user.email,
        "displayName": current_user.display_name,
        "role": current_user.role,
    })


# ------------------------------- Task catalog (managers) -------------------------------
@app.route("/api/tasks", methods=["GET"])
@manager_required
def task_list():
    return jsonify([task.to_dict() for task in catalog.list_tasks(STORE)])


@app.route("/api/tasks", methods=["POST"])
@manager_required
def task_create():
    data = payload()
    task = catalog.create_task(
        STORE,
        current_user.id,
        data.get("title"),
        instructions=data.get("instructions"),
        requires_photo=as_flag(data.get("requiresPhoto")),
    )
    return jsonify(task.to_dict()), 201


@app.route("/api/tasks/<task_id>", methods=["PUT", "PATCH"])
@manager_required
def task_update(task_id: str):
    data = payload()
    task = catalog.update_task(
        STORE,
        task_id,
        data.get("title"),
        instructions=data.get("instructions"),
        requires_photo=as_flag(data.get("requiresPhoto")),
        cache=TEMPLATE_CACHE,
    )
    return jsonify(task.to_dict())


@app.route("/api/tasks/<task_id>", methods=["DELETE"])
@manager_required
def task_delete(task_id: str):
    catalog.delete_task(STORE, task_id, cache=TEMPLATE_CACHE)
    return jsonify({"ok": True})


# ------------------------------- Assignments (managers) -------------------------------
@app.get("/api/employees")
@manager_required
def employee_list():
    return jsonify([user.to_dict() for user in dashboard.list_employees(STORE)])


@app.get("/api/employees/<user_id>/assignments")
@manager_required
def employee_assignments(user_id: str):
    split = assignments.assignable_tasks(STORE, user_id)
    return jsonify({key: [task.to_dict() for task in tasks] for key, tasks in split.items()})


@app.post("/api/employees/<user_id>/assignments")
@manager_required
def assign(user_id: str):
    task_id = payload().get("taskId")
    if not task_id:
        raise ValueError("taskId is required")
    assignment = assignments.assign_task(STORE, task_id, user_id, current_user.id)
    return jsonify(assignment.to_dict()), 201


@app.delete("/api/employees/<user_id>/assignments/<task_id>")
@manager_required
def unassign(user_id: str, task_id: str):
    assignment = assignments.unassign_task(STORE, task_id, user_id)
    return jsonify({"ok": True, "id": assignment.id})


@app.get("/api/dashboard", endpoint="manager_dashboard")
@manager_required
def manager_dashboard():
    day = requested_day()
    rows = dashboard.load_dashboard(STORE, day, cache=TEMPLATE_CACHE)
    return jsonify({"date": day, "employees": [row.to_dict() for row in rows or []]})


@app.get("/api/employees/<user_id>/history")
@login_required
def employee_history(user_id: str):
    ensure_can_view(user_id)
    months = request.args.get("months", HISTORY_MONTHS, type=int)
    report = history.build_history_report(STORE, user_id, months=months, today=local_today(), cache=TEMPLATE_CACHE)
    return jsonify(report.to_dict())


@app.get("/api/employees/<user_id>/calendar")
@login_required
def employee_calendar(user_id: str):
    ensure_can_view(user_id)
    return jsonify(calendar_payload(user_id))


def calendar_payload(user_id: str) -> Dict[str, Any]:
    report = history.build_history_report(
        STORE, user_id, months=CALENDAR_MONTHS, today=local_today(), cache=TEMPLATE_CACHE
    )
    body = report.to_dict()
    selected = request.args.get("date")
    if selected:
        day = requested_day()
        body["selected"] = {
            "date": day,
            "tasks": [item.to_dict() for item in history.items_for_date(report.history, day)],
        }
    return body


# ------------------------------- Employee views -------------------------------
@app.get("/api/my/tasks", endpoint="my_tasks")
@employee_required
def my_tasks():
    day = requested_day()
    views = daily.load_employee_tasks(STORE, current_user.id, day, cache=TEMPLATE_CACHE)
    return jsonify({"date": day, "tasks": [view.to_dict() for view in views]})


@app.post("/api/my/tasks/<assigned_task_id>/complete")
@employee_required
def complete_task(assigned_task_id: str):
    day = requested_day()
    status = daily.complete_assigned_task(
        STORE, BLOBS, current_user.id, assigned_task_id, day,
        photo=uploaded_photo(), cache=TEMPLATE_CACHE,
    )
    return jsonify(status.to_dict())


@app.route("/api/my/personal-tasks", methods=["GET"])
@employee_required
def personal_list():
    return jsonify([task.to_dict() for task in personal.list_personal_tasks(STORE, current_user.id)])


@app.route("/api/my/personal-tasks", methods=["POST"])
@employee_required
def personal_create():
    data = payload()
    task = personal.create_personal_task(
        STORE,
        current_user.id,
        data.get("title"),
        instructions=data.get("instructions"),
        requires_photo=as_flag(data.get("requiresPhoto")),
        is_recurring=as_flag(data.get("isRecurring")),
    )
    return jsonify(task.to_dict()), 201


@app.post("/api/my/personal-tasks/<task_id>/complete")
@employee_required
def personal_complete(task_id: str):
    task = personal.complete_personal_task(
        STORE, BLOBS, current_user.id, task_id, requested_day(), photo=uploaded_photo()
    )
    return jsonify(task.to_dict())


@app.delete("/api/my/personal-tasks/<task_id>")
@employee_required
def personal_delete(task_id: str):
    personal.delete_personal_task(STORE, current_user.id, task_id)
    return jsonify({"ok": True})


@app.get("/api/my/history")
@login_required
def my_history():
    return employee_history(current_user.id)


@app.get("/api/my/calendar")
@login_required
def my_calendar():
    return jsonify(calendar_payload(current_user.id))


@app.get("/photos/<path:key>")
@login_required
def photo(key: str):
    parts = key.split("/")
    if len(parts) < 2 or (not current_user.is_manager and parts[1] != current_user.id):
        abort(403)
    try:
        path = BLOBS.path_for(key)
    except ValueError:
        abort(404)
    return send_from_directory(BLOBS.root, os.path.relpath(path, BLOBS.root))


# ------------------------------- Connectivity -------------------------------
@app.get("/api/status")
@login_required
def status():
    return jsonify({"online": STORE.online, "queuedWrites": len(STORE.queue)})


@app.post("/api/reconnect")
@login_required
def reconnect():
    online = STORE.monitor.attempt_reconnection()
    body: Dict[str, Any] = {"online": online, "queuedWrites": len(STORE.queue)}
    if not online:
        return jsonify(body), 503
    # Role changes made while offline only reach this session through a fresh read.
    user = RESOLVER.resolve(current_user.id, email=current_user.email,
                            snapshot=session.get(SNAPSHOT_SESSION_KEY), refresh=True)
    remember_snapshot(user)
    login_user(AppUser.from_user(user))
    body["user"] = user.to_dict()
    return jsonify(body)


# ------------------------------- Manual reset trigger -------------------------------
TEXT = {"Content-Type": "text/plain; charset=utf-8"}


@app.route("/tasks/reset", methods=["GET", "POST", "PUT", "PATCH", "DELETE"], endpoint="trigger_reset")
def trigger_reset():
    if request.method != "POST":
        return "Method Not Allowed", 405, {**TEXT, "Allow": "POST"}
    expected = app.config.get("RESET_TRIGGER_TOKEN")
    if expected:
        supplied = request.headers.get("Authorization", "").removeprefix("Bearer ").strip()
        if not secrets.compare_digest(supplied, expected):
            return "Unauthorized", 401, TEXT
    try:
        summary = run_reset(STORE, reset_target_date(scheduled=False))
    except Exception as exc:
        LOGGER.exception("Manual reset failed")
        return f"Internal Server Error: {exc}", 500, TEXT
    return summary.describe(), 200, TEXT


# ------------- Run -------------
if __name__ == "__main__":
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    app.run(debug=DEBUG)
