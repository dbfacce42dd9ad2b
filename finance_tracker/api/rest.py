"""Owner-scoped data routes.

Ordinary users only ever see and change their own rows: every query below is
filtered by the verified caller's `user_id`. Admin-only routes depend on
`require_admin`, which re-reads the caller's role from the store.
"""

from __future__ import annotations

import zipfile
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from pydantic import BaseModel

from finance_tracker.admin.access_requests import (
    approve_access_request,
    create_access_request,
    delete_access_request,
    list_access_requests,
    reject_access_request,
)
from finance_tracker.admin.gateway import GatewayError
from finance_tracker.admin.login_history import delete_all_login_history, delete_login_record, record_login
from finance_tracker.auth import get_current_user, require_admin
from finance_tracker.auth.crud import get_profile, get_role, update_profile
from finance_tracker.config import Config
from finance_tracker.db import connect
from finance_tracker.finance.records import (
    clean_record,
    delete_all_records,
    delete_record,
    fetch_all_kinds,
    get_kind,
    insert_record,
    list_records,
    period_bounds,
    period_label,
    report_series,
    summarize,
    update_record,
    RecordKind,
)
from finance_tracker.finance.spreadsheet import build_template, export_filename, export_workbook, import_workbook

from .deps import get_cfg


XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

router = APIRouter(prefix="/rest")


def _kind_or_404(kind: str) -> RecordKind:
    try:
        return get_kind(kind)
    except ValueError:
        raise HTTPException(status_code=404, detail="unknown_record_kind")


# -----------------------------
# Profile / role
# -----------------------------


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    must_change_password: Optional[bool] = None
    temp_password: Optional[str] = None


@router.get("/profile")
def read_profile(user: Dict[str, Any] = Depends(get_current_user), cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        profile = get_profile(conn, str(user["user_id"]))
    if profile is None:
        raise HTTPException(status_code=404, detail="profile_not_found")
    return {"profile": profile}


@router.patch("/profile")
def patch_profile(
    payload: ProfileUpdate,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    """Users may rename themselves and clear their own password-change flags, nothing else."""
    sent = payload.model_fields_set
    fields: Dict[str, Any] = {}
    if "full_name" in sent:
        fields["full_name"] = (payload.full_name or "").strip() or None
    if "must_change_password" in sent:
        if payload.must_change_password is not False:
            raise HTTPException(status_code=403, detail="must_change_password_set_forbidden")
        fields["must_change_password"] = False
    if "temp_password" in sent:
        if payload.temp_password is not None:
            raise HTTPException(status_code=403, detail="temp_password_set_forbidden")
        fields["temp_password"] = None

    with connect(cfg.DB_DSN) as conn:
        update_profile(conn, str(user["user_id"]), **fields)
        profile = get_profile(conn, str(user["user_id"]))
    return {"profile": profile}


@router.get("/role")
def read_role(user: Dict[str, Any] = Depends(get_current_user), cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        role = get_role(conn, str(user["user_id"]))
    return {"role": role or "user"}


# -----------------------------
# Login history
# -----------------------------


class LoginRecordRequest(BaseModel):
    user_agent: Optional[str] = None


@router.post("/login_history")
def create_login_record(
    payload: LoginRecordRequest,
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    ip = request.client.host if request.client else None
    with connect(cfg.DB_DSN) as conn:
        row = record_login(conn, user_id=str(user["user_id"]), user_agent=payload.user_agent, ip_address=ip)
    return {"record": row}


@router.delete("/login_history/{record_id}")
def remove_login_record(
    record_id: int,
    _admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        if not delete_login_record(conn, record_id):
            raise HTTPException(status_code=404, detail="login_record_not_found")
    return {"ok": True}


@router.delete("/login_history")
def clear_login_history(
    _admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        n = delete_all_login_history(conn)
    return {"ok": True, "deleted": n}


# -----------------------------
# Access requests
# -----------------------------


class AccessRequestCreate(BaseModel):
    email: str
    phone_number: str
    full_name: Optional[str] = None


class ApproveRequest(BaseModel):
    role: Literal["user", "admin"] = "user"


class RejectRequest(BaseModel):
    reason: Optional[str] = None


@router.post("/access_requests")
def submit_access_request(payload: AccessRequestCreate, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            req = create_access_request(
                conn,
                email=payload.email,
                phone_number=payload.phone_number,
                full_name=payload.full_name,
            )
        except ValueError as e:
            detail = str(e)
            if detail == "request_pending":
                raise HTTPException(status_code=409, detail=detail)
            raise HTTPException(status_code=400, detail=detail)
    return {"request": req}


@router.get("/access_requests")
def admin_list_access_requests(
    status: str = Query("pending"),
    q: Optional[str] = None,
    _admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            rows = list_access_requests(conn, status=status, q=q)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    return {"requests": rows}


def _request_error(e: ValueError) -> HTTPException:
    detail = str(e)
    if detail == "request_not_found":
        return HTTPException(status_code=404, detail=detail)
    return HTTPException(status_code=409, detail=detail)


@router.post("/access_requests/{request_id}/approve")
def admin_approve_access_request(
    request_id: int,
    payload: ApproveRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    try:
        with connect(cfg.DB_DSN) as conn:
            user, temp_password = approve_access_request(
                conn,
                request_id,
                role=payload.role,
                reviewed_by=str(admin["user_id"]),
            )
    except ValueError as e:
        raise _request_error(e)
    except GatewayError as e:
        raise HTTPException(status_code=e.status, detail=e.message)
    return {"user": user, "temp_password": temp_password}


@router.post("/access_requests/{request_id}/reject")
def admin_reject_access_request(
    request_id: int,
    payload: RejectRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            reject_access_request(conn, request_id, reviewed_by=str(admin["user_id"]), reason=payload.reason)
        except ValueError as e:
            raise _request_error(e)
    return {"ok": True}


@router.delete("/access_requests/{request_id}")
def admin_delete_access_request(
    request_id: int,
    _admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        if not delete_access_request(conn, request_id):
            raise HTTPException(status_code=404, detail="request_not_found")
    return {"ok": True}


# -----------------------------
# Summaries / spreadsheets
# -----------------------------


def _period(year: Optional[int], month: Optional[int]) -> tuple[Optional[str], Optional[str]]:
    if month is not None and year is None:
        raise HTTPException(status_code=400, detail="month_requires_year")
    try:
        return period_bounds(year, month)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/summary")
def read_summary(
    year: Optional[int] = None,
    month: Optional[int] = None,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    _period(year, month)
    with connect(cfg.DB_DSN) as conn:
        return summarize(conn, user_id=str(user["user_id"]), year=year, month=month)


@router.get("/reports")
def read_reports(
    year: Optional[int] = None,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"series": report_series(conn, user_id=str(user["user_id"]), year=year)}


@router.get("/export")
def export_records(
    year: Optional[int] = None,
    month: Optional[int] = None,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Response:
    date_from, date_to = _period(year, month)
    with connect(cfg.DB_DSN) as conn:
        records = fetch_all_kinds(conn, user_id=str(user["user_id"]), date_from=date_from, date_to=date_to)
    content = export_workbook(records, period_label=period_label(year, month))
    filename = export_filename(year, month)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/template")
def download_template(_user: Dict[str, Any] = Depends(get_current_user)) -> Response:
    return Response(
        content=build_template(),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="financial_data_template.xlsx"'},
    )


@router.post("/import")
async def import_records(
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    """Import an .xlsx workbook sent as the raw request body."""
    data = await request.body()
    if not data:
        raise HTTPException(status_code=400, detail="empty_upload")
    try:
        with connect(cfg.DB_DSN) as conn:
            result = import_workbook(conn, user_id=str(user["user_id"]), data=data)
    except (ValueError, KeyError, zipfile.BadZipFile) as e:
        # pandas/openpyxl raise these for files that are not workbooks.
        raise HTTPException(status_code=400, detail=f"invalid_workbook: {e}")
    return result.as_dict()


# -----------------------------
# Records (income / expenses / savings)
# -----------------------------


@router.get("/records/{kind}")
def read_records(
    kind: str,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    k = _kind_or_404(kind)
    with connect(cfg.DB_DSN) as conn:
        rows = list_records(conn, k, user_id=str(user["user_id"]), date_from=date_from, date_to=date_to)
    return {"records": rows}


@router.post("/records/{kind}")
def create_record(
    kind: str,
    payload: Dict[str, Any],
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    k = _kind_or_404(kind)
    try:
        values = clean_record(k, payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    with connect(cfg.DB_DSN) as conn:
        row = insert_record(conn, k, user_id=str(user["user_id"]), values=values)
    return {"record": row}


@router.patch("/records/{kind}/{record_id}")
def patch_record(
    kind: str,
    record_id: int,
    payload: Dict[str, Any],
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    k = _kind_or_404(kind)
    try:
        values = clean_record(k, payload, partial=True)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    with connect(cfg.DB_DSN) as conn:
        row = update_record(conn, k, record_id, user_id=str(user["user_id"]), values=values)
    if row is None:
        raise HTTPException(status_code=404, detail="record_not_found")
    return {"record": row}


@router.delete("/records/{kind}/{record_id}")
def remove_record(
    kind: str,
    record_id: int,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    k = _kind_or_404(kind)
    with connect(cfg.DB_DSN) as conn:
        if not delete_record(conn, k, record_id, user_id=str(user["user_id"])):
            raise HTTPException(status_code=404, detail="record_not_found")
    return {"ok": True}


@router.delete("/records/{kind}")
def remove_all_records(
    kind: str,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    k = _kind_or_404(kind)
    with connect(cfg.DB_DSN) as conn:
        n = delete_all_records(conn, k, user_id=str(user["user_id"]))
    return {"ok": True, "deleted": n}
