"""
api/routes/v1/notes.py -- Note REST endpoints.

Routes:
  POST   /api/v1/notes               -- create (anonymous or owned; CAPTCHA required)
  GET    /api/v1/notes               -- list the caller's notes (requires auth)
  GET    /api/v1/notes/{id}          -- read; body withheld while password-locked
  PUT    /api/v1/notes/{id}          -- update (owner only)
  DELETE /api/v1/notes/{id}          -- delete (owner only)
  POST   /api/v1/notes/{id}/verify   -- note password -> access grant
  GET    /api/v1/short/{slug}        -- read through a short link

A locked note is unlocked for one hour by the grant returned from /verify,
presented as the note-access-{id} cookie or the X-Note-Access header.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    NoteCreate,
    NotePasswordCheck,
    NoteResponse,
    NoteSummaryResponse,
    NoteUpdate,
    ok,
)
from auth.dependencies import get_identity, note_grant, try_get_identity
from auth.models import Identity
from auth.tokens import set_note_access_cookie
from notes.service import NoteService

# Auth policy:
# - POST /notes, GET /notes/{id}, GET /short/{slug}, POST /notes/{id}/verify: public
# - GET /notes: requires auth
# - PUT/DELETE /notes/{id}: requires auth + ownership (AccessGuard)
router = APIRouter()


def _notes(request: Request) -> NoteService:
    return request.app.state.note_service


@router.post("/notes", status_code=201)
async def create_note(request: Request, body: NoteCreate) -> JSONResponse:
    note = await _notes(request).create_note(
        identity=try_get_identity(request),
        title=body.title,
        content=body.content,
        password=body.password,
        custom_short_url=body.custom_short_url,
        captcha_proof=body.captcha_token,
    )
    data = {
        "id": note.id,
        "title": note.title,
        "short_url": note.short_url,
        "is_password_protected": note.is_password_protected,
        "created_at": note.created_at,
    }
    return JSONResponse(status_code=201, content=ok(data, message="Note created."))


@router.get("/notes")
async def list_notes(request: Request, identity: Identity = Depends(get_identity)) -> dict:
    summaries = await _notes(request).list_notes(identity)
    return ok({"notes": [NoteSummaryResponse.from_summary(s).model_dump() for s in summaries]})


@router.get("/notes/{note_id}")
async def get_note(request: Request, note_id: str) -> dict:
    view = await _notes(request).get_note(note_id, try_get_identity(request), note_grant(request, note_id))
    return ok({"note": NoteResponse.from_view(view).model_dump()})


@router.put("/notes/{note_id}")
async def update_note(
    request: Request,
    note_id: str,
    body: NoteUpdate,
    identity: Identity = Depends(get_identity),
) -> dict:
    note = await _notes(request).update_note(
        note_id,
        identity,
        title=body.title,
        content=body.content,
        password=body.password,
    )
    data = {
        "id": note.id,
        "title": note.title,
        "updated_at": note.updated_at,
        "is_password_protected": note.is_password_protected,
    }
    return ok(data, message="Note updated.")


@router.delete("/notes/{note_id}")
async def delete_note(request: Request, note_id: str, identity: Identity = Depends(get_identity)) -> dict:
    await _notes(request).delete_note(note_id, identity)
    return ok(message="Note deleted.")


@router.post("/notes/{note_id}/verify")
async def verify_note_password(request: Request, note_id: str, body: NotePasswordCheck) -> JSONResponse:
    """Check a note password. Success returns the note body and sets the access grant cookie."""
    service = _notes(request)
    note, grant = await service.verify_password(note_id, body.password, body.captcha_token)
    view = await service.get_note(note_id, try_get_identity(request), grant)
    resp = JSONResponse(
        content=ok(
            {"note": NoteResponse.from_view(view).model_dump(), "access_token": grant},
            message="Password verified.",
        )
    )
    set_note_access_cookie(resp, note.id, grant)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/short/{slug}")
async def resolve_short_link(request: Request, slug: str) -> dict:
    service = _notes(request)
    note_id = await service.store.resolve_short_link(slug)
    grant = note_grant(request, note_id) if note_id else None
    view = await service.resolve_short_link(slug, try_get_identity(request), grant)
    return ok({"note": NoteResponse.from_view(view).model_dump()})
