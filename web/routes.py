"""
web/routes.py -- Jinja2 template routes for the overtime tracker web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same stores, token service, invite ledger) but return HTML instead of
JSON. Every template goes through render(), the single presentation sink.

Protected routes declare the gate chain as a dependency; the resolved User
arrives as an argument. Row-level decisions (whose entry may be edited, who
sees everyone's hours) go through auth/policy.py inside the handler.

Routes:
  GET       /                   -- redirect to /dashboard or /login
  GET       /login              -- login form
  POST      /login              -- handle password login
  GET|POST  /logout             -- clear cookie, redirect /login
  GET       /change-password    -- password change form (session only)
  POST      /change-password    -- set password, re-issue token
  GET       /register?code=     -- invite registration form (public)
  POST      /register           -- redeem invite, create account
  GET       /dashboard          -- entries with month/year/team/project filters
  GET       /overtime/new       -- entry form
  POST      /overtime/new       -- create entry
  GET       /overtime/edit?id=  -- edit form (owner or ADMIN)
  POST      /overtime/edit      -- update entry (owner or ADMIN)
  POST      /overtime/delete    -- delete entry (owner or ADMIN)
  GET       /overtime/all       -- per-user monthly totals (ADMIN, HR)
  GET       /export             -- export form (ADMIN, HR)
  GET       /export/csv         -- monthly CSV download (ADMIN, HR)
  GET       /invites            -- invite administration (ADMIN)
  POST      /invites            -- create invite (ADMIN)
  POST      /teams              -- create team (ADMIN)
  POST      /projects           -- create project (ADMIN)
  GET       /supervisors                 -- supervisor team assignments (ADMIN)
  POST      /supervisors/assign          -- assign a team to a supervisor (ADMIN)
  POST      /supervisors/remove          -- remove an assignment (ADMIN)
  GET       /supervisor/dashboard        -- assigned teams' entries (SUPERVISOR)
  GET       /supervisor/export           -- export form (SUPERVISOR)
  GET       /supervisor/export/csv       -- monthly CSV of assigned teams (SUPERVISOR)
"""

import logging
from collections import defaultdict
from datetime import date
from pathlib import Path
from typing import Any, Optional

from fastapi import APIRouter, Depends, Form, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import IntegrityError

from auth.dependencies import require_session, require_user, try_get_current_user
from auth.errors import CredentialError, EntropyUnavailable, InviteError, IssuanceError
from auth.invites import InviteLedger, UnknownAffiliation
from auth.models import INVITABLE_ROLES, Role, Team, User
from auth.policy import (
    EXPORT_ROLES,
    INVITE_ROLES,
    SUPERVISOR_ADMIN_ROLES,
    TEAM_OVERSIGHT_ROLES,
    VIEW_ALL_ROLES,
    can_assign_records,
    can_create_invites,
    can_export,
    can_manage_record_of,
    can_manage_supervisors,
    can_oversee_teams,
    can_view_all_records,
)
from auth.store import UserStore
from auth.tokens import (
    COOKIE_NAME,
    TokenService,
    authenticate_user,
    check_new_password,
    clear_auth_cookie,
    hash_password,
    set_auth_cookie,
    verify_password,
)
from core.config import get_settings
from records.export import entries_to_csv, export_filename
from records.models import EntryFilter, OvertimeEntry
from records.store import OvertimeStore

logger = logging.getLogger("overtime.web")

# Most entries the dashboard lists at once.
DASHBOARD_LIMIT = 100

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# Navigation and per-row links ask the same predicates the routes enforce.
templates.env.globals.update(
    can_view_all_records=can_view_all_records,
    can_export=can_export,
    can_create_invites=can_create_invites,
    can_manage_record_of=can_manage_record_of,
    can_manage_supervisors=can_manage_supervisors,
    can_oversee_teams=can_oversee_teams,
)
router = APIRouter()

# ---------------------------------------------------------------------------
# Query-string message whitelists [M3]
#
# The raw ?error= / ?msg= value is NEVER passed to templates -- only the
# message looked up here is.
# ---------------------------------------------------------------------------

_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid username or password.",
    "session_failed": "Could not start a session. Please try again.",
}

_NOTICE_MESSAGES: dict[str, str] = {
    "registered": "Account created. Welcome!",
    "password_changed": "Password changed.",
    "entry_created": "Overtime entry saved.",
    "entry_updated": "Overtime entry updated.",
    "entry_deleted": "Overtime entry deleted.",
    "invite_created": "Invite created. Share the link with the new user.",
    "team_created": "Team created.",
    "project_created": "Project created.",
    "supervisor_assigned": "Team assigned to supervisor.",
    "supervisor_removed": "Supervisor assignment removed.",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def render(request: Request, view_name: str, data: Optional[dict[str, Any]] = None, status_code: int = 200):
    """Render web/templates/<view_name>.html with data."""
    return templates.TemplateResponse(request, f"{view_name}.html", data or {}, status_code=status_code)


def _error_page(
    request: Request,
    status_code: int,
    title: str,
    message: str,
    user: Optional[User] = None,
):
    data = {"title": title, "message": message, "user": user}
    return render(request, "error", data, status_code=status_code)


def _notice(request: Request) -> Optional[str]:
    return _NOTICE_MESSAGES.get(request.query_params.get("msg", ""))


def _opt_int(value: Optional[str]) -> Optional[int]:
    """Parse an optional integer form/query value. Blank or garbage -> None."""
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _month_year(request: Request, default_current: bool) -> tuple[Optional[int], Optional[int]]:
    month = _opt_int(request.query_params.get("month"))
    year = _opt_int(request.query_params.get("year"))
    if month is not None and not 1 <= month <= 12:
        month = None
    if year is not None and not 1900 <= year <= 9999:
        year = None
    if default_current:
        today = date.today()
        month = month or today.month
        year = year or today.year
    return month, year


def _scope_user_ids(
    user_store: UserStore,
    actor: User,
    team_id: Optional[int],
    project_id: Optional[int],
) -> Optional[list[int]]:
    """User ids whose entries the actor sees. None means everyone.

    Actors without view-all rights only ever see themselves; team and project
    filters narrow the view-all set.
    """
    if not can_view_all_records(actor):
        return [actor.id]
    if team_id is None and project_id is None:
        return None
    return [
        u.id
        for u in user_store.list_users()
        if (team_id is None or u.team_id == team_id) and (project_id is None or u.project_id == project_id)
    ]


def _people(user_store: UserStore) -> dict[int, tuple[str, str, str]]:
    """user_id -> (display name, team name, project name) for reports."""
    teams = {t.id: t.name for t in user_store.list_teams()}
    projects = {p.id: p.name for p in user_store.list_projects()}
    return {
        u.id: (u.display_name, teams.get(u.team_id, ""), projects.get(u.project_id, ""))
        for u in user_store.list_users()
    }


def _parse_hours(raw: str) -> float:
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError("Invalid hours (must be between 0 and 24).") from exc


def _load_managed_entry(request: Request, user: User, entry_id: int) -> OvertimeEntry | Response:
    """Fetch an entry the user may modify, or the 404/403 page to return instead."""
    store: OvertimeStore = request.app.state.overtime_store
    entry = store.get_entry(entry_id)
    if entry is None:
        return _error_page(request, 404, "Not found", "That overtime entry does not exist.", user)
    if not can_manage_record_of(user, entry.user_id):
        logger.warning("User %d denied access to entry %d owned by %d", user.id, entry_id, entry.user_id)
        return _error_page(request, 403, "Forbidden", "You can only change your own entries.", user)
    return entry


def _start_session(request: Request, user: User, target: str) -> RedirectResponse:
    """Issue a token for user and redirect to target with the cookie set."""
    token_service: TokenService = request.app.state.token_service
    try:
        token = token_service.issue(user)
    except IssuanceError:
        logger.exception("Token issuance failed for user %s", user.id)
        return RedirectResponse("/login?error=session_failed", status_code=303)
    resp = RedirectResponse(target, status_code=303)
    set_auth_cookie(resp, token, token_service.expire_seconds, secure=get_settings().secure_cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.get("/")
def index(request: Request) -> RedirectResponse:
    if try_get_current_user(request) is not None:
        return RedirectResponse("/dashboard", status_code=303)
    return RedirectResponse("/login", status_code=303)


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request):
    """Render the login page. Already-authenticated users go to the dashboard."""
    if try_get_current_user(request) is not None:
        return RedirectResponse("/dashboard", status_code=303)
    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""))
    resp = render(request, "login", {"error_msg": error_msg, "notice": _notice(request)})
    if COOKIE_NAME in request.cookies:
        # The cookie did not authenticate above.
        clear_auth_cookie(resp)
    return resp


@router.post("/login")
def login_post(
    request: Request,
    username: str = Form(...),
    password: str = Form(...),
) -> RedirectResponse:
    """Handle username/password login form submission."""
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, username.strip(), password)  # [C1] timing equalization
    if user is None:
        logger.info("Failed login for username %r", username.strip())
        return RedirectResponse("/login?error=bad_credentials", status_code=303)

    logger.info("User %d logged in", user.id)
    target = "/change-password" if user.must_change_password else "/dashboard"
    return _start_session(request, user, target)


@router.api_route("/logout", methods=["GET", "POST"])
def logout(request: Request) -> RedirectResponse:
    """Clear the session cookie and redirect to the login page."""
    resp = RedirectResponse("/login", status_code=303)
    clear_auth_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Password change
#
# Gated by require_session (gates 1-3 only): this is where gate 4 sends
# users with must_change_password set, so it must not apply gate 4 itself.
# ---------------------------------------------------------------------------


@router.get("/change-password", response_class=HTMLResponse)
def change_password_form(request: Request, user: User = Depends(require_session)):
    return render(request, "change_password", {"user": user, "forced": user.must_change_password})


@router.post("/change-password", response_class=HTMLResponse)
def change_password_post(
    request: Request,
    current_password: str = Form(...),
    new_password: str = Form(...),
    confirm_password: str = Form(...),
    user: User = Depends(require_session),
):
    """Verify the current password, store the new one, and re-issue the token.

    Clears must_change_password. The fresh token replaces the cookie so the
    session continues without a second login.
    """
    settings = get_settings()
    user_store: UserStore = request.app.state.user_store

    def fail(message: str):
        return render(
            request,
            "change_password",
            {"user": user, "forced": user.must_change_password, "error_msg": message},
            status_code=400,
        )

    if not user.hashed_password or not verify_password(current_password, user.hashed_password):
        logger.debug("Password change for user %d: wrong current password", user.id)
        return fail("Current password is incorrect.")
    try:
        check_new_password(new_password, confirm_password, settings.min_password_length)
    except CredentialError as exc:
        logger.debug("Password change for user %d rejected: %s", user.id, exc.message)
        return fail(exc.message)
    if new_password == current_password:
        return fail("New password must differ from the current one.")

    user_store.set_password(user.id, hash_password(new_password))
    user.must_change_password = False
    logger.info("User %d changed their password", user.id)
    return _start_session(request, user, "/dashboard?msg=password_changed")


# ---------------------------------------------------------------------------
# Invite registration (public)
#
# GET and POST each re-validate the code: the invite may expire or be used
# between rendering the form and submitting it.
# ---------------------------------------------------------------------------


def _invite_error_page(request: Request, exc: InviteError):
    logger.info("Invite rejected on %s: %s", request.url.path, type(exc).__name__)
    return _error_page(request, 400, "Invite not valid", exc.message)


@router.get("/register", response_class=HTMLResponse)
def register_form(request: Request, code: str = ""):
    ledger: InviteLedger = request.app.state.invite_ledger
    try:
        invite = ledger.validate(code)
    except InviteError as exc:
        return _invite_error_page(request, exc)
    return render(request, "register", {"invite": invite, "code": code})


@router.post("/register", response_class=HTMLResponse)
def register_post(
    request: Request,
    code: str = Form(""),
    username: str = Form(...),
    password: str = Form(...),
    confirm_password: str = Form(...),
):
    """Redeem the invite: create the account, consume the code, and log in.

    The code comes from the form body, or from the query string when the form
    was posted back to /register?code=.
    """
    ledger: InviteLedger = request.app.state.invite_ledger
    code = code or request.query_params.get("code", "")
    try:
        user = ledger.redeem(code, username, password, confirm_password)
    except InviteError as exc:
        return _invite_error_page(request, exc)
    except CredentialError as exc:
        logger.debug("Registration form rejected: %s", exc.message)
        # Re-validate so the form shows the invite's current details.
        try:
            invite = ledger.validate(code)
        except InviteError as invite_exc:
            return _invite_error_page(request, invite_exc)
        return render(
            request,
            "register",
            {"invite": invite, "code": code, "username": username, "error_msg": exc.message},
            status_code=400,
        )
    logger.info("User %d registered from an invite", user.id)
    return _start_session(request, user, "/dashboard?msg=registered")


# ---------------------------------------------------------------------------
# Dashboard and overtime entries
# ---------------------------------------------------------------------------


@router.get("/dashboard", response_class=HTMLResponse)
def dashboard(request: Request, user: User = Depends(require_user())):
    """Entries visible to the user, newest first, with optional filters.

    Employees and supervisors see their own entries. ADMIN and HR see
    everyone's and may narrow by team or project.
    """
    user_store: UserStore = request.app.state.user_store
    store: OvertimeStore = request.app.state.overtime_store

    month, year = _month_year(request, default_current=False)
    team_id = _opt_int(request.query_params.get("team_id"))
    project_id = _opt_int(request.query_params.get("project_id"))

    user_ids = _scope_user_ids(user_store, user, team_id, project_id)
    entries = store.list_entries(EntryFilter(user_ids=user_ids, month=month, year=year, limit=DASHBOARD_LIMIT))
    view_all = can_view_all_records(user)
    return render(
        request,
        "dashboard",
        {
            "user": user,
            "entries": entries,
            "total_hours": sum(e.hours for e in entries),
            "people": _people(user_store) if view_all else {},
            "teams": user_store.list_teams() if view_all else [],
            "projects": user_store.list_projects() if view_all else [],
            "view_all": view_all,
            "can_invite": can_create_invites(user),
            "month": month,
            "year": year,
            "team_id": team_id,
            "project_id": project_id,
            "notice": _notice(request),
        },
    )


def _entry_form(request: Request, user: User, status_code: int = 200, **extra):
    user_store: UserStore = request.app.state.user_store
    data = {
        "user": user,
        "assignable": user_store.list_users() if can_assign_records(user) else [],
        "today": date.today().isoformat(),
    }
    data.update(extra)
    return render(request, "overtime_form", data, status_code=status_code)


@router.get("/overtime/new", response_class=HTMLResponse)
def overtime_new_form(request: Request, user: User = Depends(require_user())):
    return _entry_form(request, user)


@router.post("/overtime/new", response_class=HTMLResponse)
def overtime_new(
    request: Request,
    entry_date: str = Form(..., alias="date"),
    hours: str = Form(...),
    description: str = Form(""),
    owner_id: str = Form("", alias="user_id"),
    user: User = Depends(require_user()),
):
    """Create an entry for the current user, or for another user (ADMIN only)."""
    store: OvertimeStore = request.app.state.overtime_store
    user_store: UserStore = request.app.state.user_store

    target_id = _opt_int(owner_id) or user.id
    if target_id != user.id:
        if not can_assign_records(user):
            logger.warning("User %d tried to record hours for user %d", user.id, target_id)
            return _error_page(request, 403, "Forbidden", "You can only record your own hours.", user)
        if user_store.get_by_id(target_id) is None:
            return _entry_form(request, user, 400, error_msg="Unknown user.")

    try:
        store.create_entry(
            OvertimeEntry(
                user_id=target_id,
                date=entry_date,
                hours=_parse_hours(hours),
                description=description.strip(),
            )
        )
    except ValueError as exc:
        logger.debug("Overtime entry rejected: %s", exc)
        return _entry_form(
            request, user, 400, error_msg=str(exc), date=entry_date, hours=hours, description=description
        )
    return RedirectResponse("/dashboard?msg=entry_created", status_code=303)


@router.get("/overtime/edit", response_class=HTMLResponse)
def overtime_edit_form(
    request: Request,
    entry_id: int = Query(..., alias="id"),
    user: User = Depends(require_user()),
):
    entry = _load_managed_entry(request, user, entry_id)
    if isinstance(entry, Response):
        return entry
    return render(request, "overtime_edit", {"user": user, "entry": entry})


@router.post("/overtime/edit", response_class=HTMLResponse)
def overtime_edit(
    request: Request,
    entry_id: int = Form(..., alias="id"),
    entry_date: str = Form(..., alias="date"),
    hours: str = Form(...),
    description: str = Form(""),
    user: User = Depends(require_user()),
):
    entry = _load_managed_entry(request, user, entry_id)
    if isinstance(entry, Response):
        return entry
    store: OvertimeStore = request.app.state.overtime_store
    try:
        store.update_entry(entry_id, entry_date, _parse_hours(hours), description.strip())
    except ValueError as exc:
        logger.debug("Overtime update rejected: %s", exc)
        return render(
            request,
            "overtime_edit",
            {"user": user, "entry": entry, "error_msg": str(exc)},
            status_code=400,
        )
    return RedirectResponse("/dashboard?msg=entry_updated", status_code=303)


@router.post("/overtime/delete")
def overtime_delete(
    request: Request,
    entry_id: int = Form(..., alias="id"),
    user: User = Depends(require_user()),
):
    entry = _load_managed_entry(request, user, entry_id)
    if isinstance(entry, Response):
        return entry
    store: OvertimeStore = request.app.state.overtime_store
    store.delete_entry(entry_id)
    logger.info("User %d deleted entry %d", user.id, entry_id)
    return RedirectResponse("/dashboard?msg=entry_deleted", status_code=303)


@router.get("/overtime/all", response_class=HTMLResponse)
def overtime_all(request: Request, user: User = Depends(require_user(*VIEW_ALL_ROLES))):
    """Per-user totals across everyone in scope.

    Without month or year the summary covers all time.
    """
    user_store: UserStore = request.app.state.user_store
    store: OvertimeStore = request.app.state.overtime_store

    month, year = _month_year(request, default_current=False)
    team_id = _opt_int(request.query_params.get("team_id"))
    project_id = _opt_int(request.query_params.get("project_id"))
    user_ids = _scope_user_ids(user_store, user, team_id, project_id)
    entries = store.list_entries(EntryFilter(user_ids=user_ids, month=month, year=year, newest_first=False))

    totals: dict[int, float] = defaultdict(float)
    counts: dict[int, int] = defaultdict(int)
    for entry in entries:
        totals[entry.user_id] += entry.hours
        counts[entry.user_id] += 1

    people = _people(user_store)
    rows = sorted(
        (
            {
                "name": people.get(uid, (f"user #{uid}", "", ""))[0],
                "team": people.get(uid, ("", "", ""))[1],
                "project": people.get(uid, ("", "", ""))[2],
                "entries": counts[uid],
                "hours": hours,
            }
            for uid, hours in totals.items()
        ),
        key=lambda row: row["name"].lower(),
    )
    return render(
        request,
        "all_entries",
        {
            "user": user,
            "rows": rows,
            "entries": entries,
            "people": people,
            "grand_total": sum(totals.values()),
            "month": month,
            "year": year,
            "team_id": team_id,
            "project_id": project_id,
            "teams": user_store.list_teams(),
            "projects": user_store.list_projects(),
        },
    )


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


@router.get("/export", response_class=HTMLResponse)
def export_form(request: Request, user: User = Depends(require_user(*EXPORT_ROLES))):
    user_store: UserStore = request.app.state.user_store
    month, year = _month_year(request, default_current=True)
    return render(
        request,
        "export",
        {
            "user": user,
            "month": month,
            "year": year,
            "teams": user_store.list_teams(),
            "projects": user_store.list_projects(),
        },
    )


@router.get("/export/csv")
def export_csv(request: Request, user: User = Depends(require_user(*EXPORT_ROLES))) -> Response:
    """Download one month of entries as CSV, oldest first."""
    if not can_export(user):
        return _error_page(request, 403, "Forbidden", "You may not export overtime data.", user)
    user_store: UserStore = request.app.state.user_store
    store: OvertimeStore = request.app.state.overtime_store

    month, year = _month_year(request, default_current=True)
    team_id = _opt_int(request.query_params.get("team_id"))
    project_id = _opt_int(request.query_params.get("project_id"))
    user_ids = _scope_user_ids(user_store, user, team_id, project_id)
    entries = store.list_entries(EntryFilter(user_ids=user_ids, month=month, year=year, newest_first=False))

    logger.info("User %d exported %d entries for %04d-%02d", user.id, len(entries), year, month)
    return Response(
        content=entries_to_csv(entries, _people(user_store)),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(year, month)}"'},
    )


# ---------------------------------------------------------------------------
# Invite administration (ADMIN)
# ---------------------------------------------------------------------------


def _invites_page(request: Request, user: User, status_code: int = 200, error_msg: Optional[str] = None):
    ledger: InviteLedger = request.app.state.invite_ledger
    user_store: UserStore = request.app.state.user_store
    invites = ledger.list_for_creator(user.id)
    return render(
        request,
        "invites",
        {
            "user": user,
            "invites": [(invite, ledger.is_valid(invite)) for invite in invites],
            "roles": INVITABLE_ROLES,
            "teams": user_store.list_teams(),
            "projects": user_store.list_projects(),
            "base_url": str(request.base_url).rstrip("/"),
            "error_msg": error_msg,
            "notice": _notice(request),
        },
        status_code=status_code,
    )


@router.get("/invites", response_class=HTMLResponse)
def invites_page(request: Request, user: User = Depends(require_user(*INVITE_ROLES))):
    return _invites_page(request, user)


@router.post("/invites", response_class=HTMLResponse)
def invites_create(
    request: Request,
    role: str = Form(...),
    full_name: str = Form(""),
    team_id: str = Form(""),
    project_id: str = Form(""),
    user: User = Depends(require_user(*INVITE_ROLES)),
):
    if not can_create_invites(user):
        return _error_page(request, 403, "Forbidden", "Only admins can create invites.", user)
    ledger: InviteLedger = request.app.state.invite_ledger
    try:
        ledger.create(
            user.id,
            Role(role),
            full_name=full_name,
            team_id=_opt_int(team_id),
            project_id=_opt_int(project_id),
        )
    except UnknownAffiliation as exc:
        logger.debug("Invite form rejected affiliation: %s", exc)
        return _invites_page(request, user, 400, error_msg=str(exc))
    except ValueError:
        logger.debug("Invite form rejected role %r", role)
        return _invites_page(request, user, 400, error_msg="Choose a valid role.")
    except EntropyUnavailable as exc:
        logger.exception("Invite code generation failed")
        return _error_page(request, 503, "Try again later", exc.message, user)
    return RedirectResponse("/invites?msg=invite_created", status_code=303)


@router.post("/teams", response_class=HTMLResponse)
def teams_create(
    request: Request,
    name: str = Form(...),
    user: User = Depends(require_user(*INVITE_ROLES)),
):
    user_store: UserStore = request.app.state.user_store
    if not name.strip():
        return _invites_page(request, user, 400, error_msg="Team name is required.")
    try:
        user_store.create_team(name.strip())
    except IntegrityError:
        return _invites_page(request, user, 400, error_msg="A team with that name already exists.")
    return RedirectResponse("/invites?msg=team_created", status_code=303)


@router.post("/projects", response_class=HTMLResponse)
def projects_create(
    request: Request,
    name: str = Form(...),
    user: User = Depends(require_user(*INVITE_ROLES)),
):
    user_store: UserStore = request.app.state.user_store
    if not name.strip():
        return _invites_page(request, user, 400, error_msg="Project name is required.")
    try:
        user_store.create_project(name.strip())
    except IntegrityError:
        return _invites_page(request, user, 400, error_msg="A project with that name already exists.")
    return RedirectResponse("/invites?msg=project_created", status_code=303)


# ---------------------------------------------------------------------------
# Supervisor assignments (ADMIN)
# ---------------------------------------------------------------------------


def _supervisors_page(request: Request, user: User, status_code: int = 200, error_msg: Optional[str] = None):
    user_store: UserStore = request.app.state.user_store
    teams = {t.id: t.name for t in user_store.list_teams()}
    names = {u.id: u.display_name for u in user_store.list_users()}
    assignments = [
        {
            "id": a.id,
            "supervisor": names.get(a.user_id, f"user #{a.user_id}"),
            "team": teams.get(a.team_id, f"team #{a.team_id}"),
        }
        for a in user_store.list_supervisor_assignments()
    ]
    return render(
        request,
        "supervisors",
        {
            "user": user,
            "assignments": assignments,
            "supervisors": user_store.list_users_with_role(Role.SUPERVISOR),
            "teams": user_store.list_teams(),
            "error_msg": error_msg,
            "notice": _notice(request),
        },
        status_code=status_code,
    )


@router.get("/supervisors", response_class=HTMLResponse)
def supervisors_page(request: Request, user: User = Depends(require_user(*SUPERVISOR_ADMIN_ROLES))):
    return _supervisors_page(request, user)


@router.post("/supervisors/assign", response_class=HTMLResponse)
def supervisors_assign(
    request: Request,
    supervisor_id: str = Form(..., alias="user_id"),
    team_id: str = Form(...),
    user: User = Depends(require_user(*SUPERVISOR_ADMIN_ROLES)),
):
    """Let a supervisor oversee one more team within their own project."""
    user_store: UserStore = request.app.state.user_store
    target_id = _opt_int(supervisor_id)
    target = user_store.get_by_id(target_id) if target_id is not None else None
    if target is None:
        return _supervisors_page(request, user, 400, error_msg="Unknown user.")
    if not can_oversee_teams(target):
        return _supervisors_page(request, user, 400, error_msg="That user is not a supervisor.")
    if target.project_id is None:
        return _supervisors_page(request, user, 400, error_msg="The supervisor has no project assigned.")
    wanted_team = _opt_int(team_id)
    team = user_store.get_team(wanted_team) if wanted_team is not None else None
    if team is None:
        return _supervisors_page(request, user, 400, error_msg="Unknown team.")
    try:
        user_store.assign_supervisor(target.id, team.id)
    except IntegrityError:
        return _supervisors_page(request, user, 400, error_msg="That supervisor already oversees this team.")
    logger.info("User %d assigned team %d to supervisor %d", user.id, team.id, target.id)
    return RedirectResponse("/supervisors?msg=supervisor_assigned", status_code=303)


@router.post("/supervisors/remove", response_class=HTMLResponse)
def supervisors_remove(
    request: Request,
    assignment_id: int = Form(..., alias="id"),
    user: User = Depends(require_user(*SUPERVISOR_ADMIN_ROLES)),
):
    user_store: UserStore = request.app.state.user_store
    if not user_store.remove_supervisor_assignment(assignment_id):
        return _error_page(request, 404, "Not found", "That assignment does not exist.", user)
    logger.info("User %d removed supervisor assignment %d", user.id, assignment_id)
    return RedirectResponse("/supervisors?msg=supervisor_removed", status_code=303)


# ---------------------------------------------------------------------------
# Supervisor oversight (SUPERVISOR)
#
# A supervisor sees members of the teams assigned to them, and only those
# members who also belong to the supervisor's own project.
# ---------------------------------------------------------------------------


def _supervised_scope(
    user_store: UserStore,
    supervisor: User,
    team_id: Optional[int],
) -> tuple[list[Team], Optional[Team], list[int]]:
    """Teams the supervisor oversees, the selected one (if authorized), and the member ids in scope."""
    assigned = set(user_store.supervised_team_ids(supervisor.id))
    teams = [t for t in user_store.list_teams() if t.id in assigned]
    selected = next((t for t in teams if t.id == team_id), None)
    wanted = {selected.id} if selected is not None else {t.id for t in teams}
    member_ids = [
        u.id
        for u in user_store.list_users()
        if u.project_id is not None and u.project_id == supervisor.project_id and u.team_id in wanted
    ]
    return teams, selected, member_ids


def _supervisor_unassigned(supervisor: User, teams: list[Team]) -> Optional[str]:
    if supervisor.project_id is None:
        return "You are not assigned to a project. Please contact an administrator."
    if not teams:
        return "You are not assigned to supervise any teams. Please contact an administrator."
    return None


@router.get("/supervisor/dashboard", response_class=HTMLResponse)
def supervisor_dashboard(request: Request, user: User = Depends(require_user(*TEAM_OVERSIGHT_ROLES))):
    """Entries and per-member totals for the supervisor's teams, newest first."""
    user_store: UserStore = request.app.state.user_store
    store: OvertimeStore = request.app.state.overtime_store

    teams, selected, member_ids = _supervised_scope(
        user_store, user, _opt_int(request.query_params.get("team_id"))
    )
    problem = _supervisor_unassigned(user, teams)
    if problem is not None:
        return render(request, "supervisor_dashboard", {"user": user, "problem": problem})

    month, year = _month_year(request, default_current=False)
    entries = store.list_entries(EntryFilter(user_ids=member_ids, month=month, year=year))
    people = _people(user_store)
    totals: dict[int, float] = defaultdict(float)
    for entry in entries:
        totals[entry.user_id] += entry.hours
    rows = sorted(
        ({"name": people.get(uid, (f"user #{uid}", "", ""))[0], "hours": hours} for uid, hours in totals.items()),
        key=lambda row: row["name"].lower(),
    )
    project = user_store.get_project(user.project_id)
    return render(
        request,
        "supervisor_dashboard",
        {
            "user": user,
            "project": project,
            "teams": teams,
            "team_id": selected.id if selected is not None else None,
            "entries": entries,
            "people": people,
            "rows": rows,
            "total_hours": sum(totals.values()),
            "month": month,
            "year": year,
        },
    )


@router.get("/supervisor/export", response_class=HTMLResponse)
def supervisor_export_form(request: Request, user: User = Depends(require_user(*TEAM_OVERSIGHT_ROLES))):
    user_store: UserStore = request.app.state.user_store
    teams, _, _ = _supervised_scope(user_store, user, None)
    month, year = _month_year(request, default_current=True)
    return render(
        request,
        "supervisor_export",
        {
            "user": user,
            "teams": teams,
            "problem": _supervisor_unassigned(user, teams),
            "month": month,
            "year": year,
        },
    )


@router.get("/supervisor/export/csv")
def supervisor_export_csv(request: Request, user: User = Depends(require_user(*TEAM_OVERSIGHT_ROLES))) -> Response:
    """Download one month of the supervised teams' entries as CSV, oldest first."""
    user_store: UserStore = request.app.state.user_store
    store: OvertimeStore = request.app.state.overtime_store

    teams, selected, member_ids = _supervised_scope(
        user_store, user, _opt_int(request.query_params.get("team_id"))
    )
    problem = _supervisor_unassigned(user, teams)
    if problem is not None:
        return _error_page(request, 403, "Forbidden", problem, user)

    month, year = _month_year(request, default_current=True)
    entries = store.list_entries(EntryFilter(user_ids=member_ids, month=month, year=year, newest_first=False))
    project = user_store.get_project(user.project_id)
    project_name = project.name if project is not None else ""
    team_name = selected.name if selected is not None else "all-teams"

    logger.info("Supervisor %d exported %d entries for %04d-%02d", user.id, len(entries), year, month)
    filename = export_filename(year, month, team_name, project_name)
    return Response(
        content=entries_to_csv(entries, _people(user_store)),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
