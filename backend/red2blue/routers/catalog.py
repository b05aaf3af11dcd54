# red2blue/routers/catalog.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from red2blue import auth, models, schemas
from red2blue.database import get_db
from red2blue.feature_flags import FEATURE_SCENARIOS
from red2blue.tier_guard import require_feature

router = APIRouter(prefix="/api", tags=["catalog"])


@router.get("/techniques", response_model=list[schemas.TechniqueOut])
def list_techniques(
    category: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    stmt = select(models.Technique)
    if category:
        stmt = stmt.where(models.Technique.category == category.strip().lower())
    return db.scalars(stmt.order_by(models.Technique.id)).all()


@router.get("/techniques/{technique_id}", response_model=schemas.TechniqueOut)
def get_technique(
    technique_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    t = db.get(models.Technique, technique_id)
    if not t:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "Technique not found"})
    return t


@router.get(
    "/scenarios",
    response_model=list[schemas.ScenarioOut],
    dependencies=[Depends(require_feature(FEATURE_SCENARIOS))],
)
def list_scenarios(
    pressure_level: Optional[str] = Query(None, pattern="^(low|medium|high)$"),
    db: Session = Depends(get_db),
):
    stmt = select(models.Scenario)
    if pressure_level:
        stmt = stmt.where(models.Scenario.pressure_level == pressure_level)
    return db.scalars(stmt.order_by(models.Scenario.id)).all()
