# FILE: clinicdesk/api/routes_dispenses.py
from __future__ import annotations

import io
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from clinicdesk.api.deps import current_user, get_db, require_roles
from clinicdesk.api.response import ok
from clinicdesk.models.user import User
from clinicdesk.services.dispense_export import (
    build_dispense_csv,
    build_dispense_excel,
)
from clinicdesk.services.dispense_service import DispenseService

router = APIRouter()

ROLES = ("pharmacist", "doctor", "receptionist")

XLSX_MEDIA = ("application/vnd.openxmlformats-officedocument."
              "spreadsheetml.sheet")


def _raw_filters(
        from_: Optional[str] = Query(None, alias="from"),
        to: Optional[str] = Query(None),
        search: Optional[str] = Query(None),
        page: Optional[str] = Query(None),
        page_size: Optional[str] = Query(None, alias="pageSize"),
        sort_by: Optional[str] = Query(None, alias="sortBy"),
        sort_dir: Optional[str] = Query(None, alias="sortDir"),
) -> dict:
    # validated by DispenseFilters inside the service
    return {
        "from": from_,
        "to": to,
        "search": search,
        "page": page,
        "pageSize": page_size,
        "sortBy": sort_by,
        "sortDir": sort_dir,
    }


@router.get("/")
def list_dispenses(
        filters: dict = Depends(_raw_filters),
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, *ROLES)
    res = DispenseService(db).list(filters)
    return ok(res.model_dump(by_alias=True))


@router.get("/export")
def export_dispenses(
        filters: dict = Depends(_raw_filters),
        format: Literal["csv", "xlsx"] = Query("csv"),
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, *ROLES)
    svc = DispenseService(db)
    rows = svc.fetch_all(filters)

    if format == "xlsx":
        bio = io.BytesIO()
        build_dispense_excel(bio, rows)
        bio.seek(0)
        filename = svc.export_filename("xlsx")
        return StreamingResponse(
            bio,
            media_type=XLSX_MEDIA,
            headers={
                "Content-Disposition": f'attachment; filename="{filename}"'
            },
        )

    filename = svc.export_filename("csv")
    body = build_dispense_csv(rows).encode("utf-8")
    return StreamingResponse(
        io.BytesIO(body),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
