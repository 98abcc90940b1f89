"""Registrar router -- check, register, update, delete, lookup and search VIRT names."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from virt.registrar.service import (
    DeleteRequest,
    RegisterRequest,
    RegistrarService,
    UpdateRequest,
)
from web.backend.app.models.api import (
    CheckResponse,
    DeleteRequestBody,
    DeleteResponse,
    ErrorResponse,
    LookupResponse,
    RegisterRequestBody,
    RegisterResponse,
    SearchHitResponse,
    SiteSummaryResponse,
    UpdateRequestBody,
    UpdateResponse,
)

router = APIRouter(
    prefix="/api",
    tags=["registrar"],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)

# Handlers are plain ``def`` so FastAPI runs them in its threadpool: secret
# hashing and index writes block.


def get_registrar(request: Request) -> RegistrarService:
    """Return the RegistrarService opened by the application lifespan."""
    return request.app.state.registrar


@router.get(
    "/check/{label}",
    response_model=CheckResponse,
    summary="Check name availability",
)
def check_name(
    label: str,
    tag: Optional[str] = Query(None, description="Reserved tag"),
    registrar: RegistrarService = Depends(get_registrar),
):
    result = registrar.check(label, tag)
    return CheckResponse(
        label=result.label,
        tag=result.tag,
        available=result.available,
        message=result.message,
    )


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new name",
)
def register_name(
    body: RegisterRequestBody,
    registrar: RegistrarService = Depends(get_registrar),
):
    """Register ``label.tag`` and return its secret key.

    The key is shown only in this response; the registrar keeps a salted
    digest of it and nothing else.
    """
    result = registrar.register(
        RegisterRequest(
            label=body.label,
            tag=body.tag,
            target=body.target,
            title=body.title,
            description=body.description,
            keywords=body.keywords,
            body_text=body.body_text,
        )
    )
    return RegisterResponse(
        success=result.success,
        name=result.name,
        secret_key=result.secret_key,
        message=result.message,
    )


@router.put(
    "/update",
    response_model=UpdateResponse,
    summary="Update a name (requires its secret key)",
)
def update_name(
    body: UpdateRequestBody,
    registrar: RegistrarService = Depends(get_registrar),
):
    result = registrar.update(
        UpdateRequest(
            label=body.label,
            tag=body.tag,
            secret=body.secret,
            target=body.target,
            title=body.title,
            description=body.description,
        )
    )
    return UpdateResponse(
        success=result.success,
        message=result.message,
        site=SiteSummaryResponse(
            label=result.label,
            tag=result.tag,
            target=result.target,
            title=result.title,
            description=result.description,
            last_accessed=result.last_accessed,
        ),
    )


@router.delete(
    "/delete",
    response_model=DeleteResponse,
    summary="Delete a name (requires its secret key)",
)
def delete_name(
    body: DeleteRequestBody,
    registrar: RegistrarService = Depends(get_registrar),
):
    registrar.delete(DeleteRequest(label=body.label, tag=body.tag, secret=body.secret))
    return DeleteResponse(success=True, message="Name deleted successfully")


@router.get(
    "/lookup/{label}/{tag}",
    response_model=LookupResponse,
    summary="Resolve a name to its target",
)
def lookup_name(
    label: str,
    tag: str,
    registrar: RegistrarService = Depends(get_registrar),
):
    result = registrar.lookup(label, tag)
    return LookupResponse(
        label=result.label,
        tag=result.tag,
        target=result.target,
        raw_base=result.raw_base,
        title=result.title,
        description=result.description,
        verified=result.verified,
        created_at=result.created_at,
        last_accessed=result.last_accessed,
    )


@router.get(
    "/search",
    response_model=list[SearchHitResponse],
    summary="Search registered names",
)
def search_names(
    q: Optional[str] = Query(None, description="Free-text search"),
    registrar: RegistrarService = Depends(get_registrar),
):
    """Return up to 20 names ranked by title, keyword, description and body matches."""
    return [
        SearchHitResponse(label=h.label, tag=h.tag, title=h.title, description=h.description)
        for h in registrar.search(q)
    ]
