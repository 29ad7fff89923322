"""Multi-model requests: one prompt fanned out to several models."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header

from friendlai_core.dispatch import DispatchService
from friendlai_core.schemas import CompositeCreate, JobOut

from ..auth import resolve_owner
from ..db import get_dispatch
from ..metrics import inc
from ..schemas import CompositeCreateResponse, CompositeOut

router = APIRouter()


@router.post("/multi", response_model=CompositeCreateResponse)
def create_composite(
    body: CompositeCreate,
    authorization: Optional[str] = Header(default=None),
    dispatch: DispatchService = Depends(get_dispatch),
):
    owner = resolve_owner(body.user, authorization)
    composite_id = dispatch.submit_composite_job(body.prompt, body.models, owner)
    inc("jobs_submitted_total", {"kind": "composite"})
    return CompositeCreateResponse(composite_id=composite_id)


@router.get("/multi/{composite_id}", response_model=CompositeOut)
def get_composite(composite_id: str, dispatch: DispatchService = Depends(get_dispatch)):
    composite, members = dispatch.get_composite(composite_id)
    return CompositeOut(
        id=composite.id,
        query=composite.prompt,
        user=composite.owner,
        created=composite.created_at,
        jobs=[JobOut.from_job(job) for job in members],
    )
