"""
Analysis routes.

- GET  /api/analysis/eligibility  read-only eligibility check
- POST /api/analysis/authorize    gate + meter one run (consumes a ticket if needed)
- POST /api/analysis/save         persist a result (paid plans only)
- GET  /api/analysis/history      saved, unexpired results
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from career_compass.core.auth import get_current_user_id
from career_compass.core.database import get_db
from career_compass.core.messages import message_for
from career_compass.features.analyses.service import list_analyses, save_analysis
from career_compass.features.entitlements.service import authorize_analysis_run, check_analysis_eligibility

router = APIRouter(prefix="/api/analysis", tags=["analysis"])


class AuthorizeRequest(BaseModel):
    analysis_type: str


class SaveAnalysisRequest(BaseModel):
    analysis_type: str
    input_data: Optional[Dict[str, Any]] = None
    result: Optional[Dict[str, Any]] = None
    title: Optional[str] = None
    tags: Optional[List[str]] = None
    is_favorite: bool = False


@router.get("/eligibility")
def get_eligibility(
    analysis_type: str = Query(...),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return check_analysis_eligibility(db, user_id, analysis_type).model_dump()


@router.post("/authorize")
def post_authorize(body: AuthorizeRequest, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    eligibility = authorize_analysis_run(db, user_id, body.analysis_type)
    return {"allowed": True, **eligibility.model_dump()}


@router.post("/save")
def post_save(body: SaveAnalysisRequest, user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    row = save_analysis(
        db,
        user_id,
        body.analysis_type,
        body.input_data,
        body.result,
        title=body.title,
        tags=body.tags,
        is_favorite=body.is_favorite,
    )
    return {
        "success": True,
        "message": message_for("analysis_saved"),
        "id": row["id"],
        "expires_at": row["expires_at"],
    }


@router.get("/history")
def get_history(
    analysis_type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return {"analyses": [dict(r) for r in list_analyses(db, user_id, analysis_type, limit)]}
