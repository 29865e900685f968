from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .admin import AdminService
from .auth import IdentityService, require_admin
from .query_builder import QueryBuilder
from .schemas import (
    Credentials,
    InquiryIn,
    InquiryStatusUpdate,
    PasswordReset,
    PasswordUpdate,
    PropertyIn,
    PropertyUpdate,
    Result,
    SessionTokens,
)

STATUS_BY_CODE = {
    "invalid_filter": 400,
    "unauthorized": 401,
    "not_found": 404,
    "remote_query_failed": 502,
}

router = APIRouter(prefix="/api")
admin_router = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin)])


def queries(request: Request) -> QueryBuilder:
    return request.app.state.queries


def admin_service(request: Request) -> AdminService:
    return request.app.state.admin


def identity(request: Request) -> IdentityService:
    return request.app.state.identity


def respond(result: Result, created: bool = False) -> JSONResponse:
    if result.success:
        status = 201 if created else 200
    else:
        status = STATUS_BY_CODE.get(result.code, 500)
    return JSONResponse(jsonable_encoder(result, exclude_none=True), status_code=status)


# ---- public catalog ----

@router.get("/properties")
async def list_properties(request: Request, qb: QueryBuilder = Depends(queries)):
    return respond(await qb.build_and_execute(dict(request.query_params)))


@router.get("/properties/featured")
async def featured_properties(limit: int = 6, qb: QueryBuilder = Depends(queries)):
    return respond(await qb.get_featured(limit=min(max(limit, 1), 50)))


@router.get("/properties/{property_id}")
async def get_property(property_id: int, qb: QueryBuilder = Depends(queries)):
    return respond(await qb.get_by_id(property_id))


@router.get("/properties/{property_id}/similar")
async def similar_properties(
    property_id: int,
    property_type: Optional[str] = None,
    district: Optional[str] = None,
    limit: int = 3,
    qb: QueryBuilder = Depends(queries),
):
    return respond(await qb.get_similar(property_id, property_type, district, limit=min(max(limit, 1), 50)))


@router.get("/agents/{agent_id}")
async def get_agent(agent_id: int, qb: QueryBuilder = Depends(queries)):
    return respond(await qb.get_agent(agent_id))


@router.get("/stats")
async def stats(qb: QueryBuilder = Depends(queries)):
    return respond(await qb.get_stats())


@router.post("/inquiries")
async def create_inquiry(payload: InquiryIn, svc: AdminService = Depends(admin_service)):
    return respond(await svc.create_inquiry(payload), created=True)


# ---- identity ----

@router.post("/auth/sign-in")
async def sign_in(creds: Credentials, ids: IdentityService = Depends(identity)):
    result = await ids.sign_in(creds.email, creds.password)
    if not result.success:
        result.code = "unauthorized"
    return respond(result)


@router.post("/auth/sign-up")
async def sign_up(creds: Credentials, ids: IdentityService = Depends(identity)):
    return respond(await ids.sign_up(creds.email, creds.password, creds.data), created=True)


@router.post("/auth/sign-out")
async def sign_out(tokens: SessionTokens, ids: IdentityService = Depends(identity)):
    return respond(await ids.sign_out(tokens.access_token, tokens.refresh_token))


@router.post("/auth/session")
async def session(tokens: SessionTokens, ids: IdentityService = Depends(identity)):
    return respond(await ids.get_session(tokens.access_token, tokens.refresh_token))


@router.post("/auth/reset-password")
async def reset_password(body: PasswordReset, request: Request, ids: IdentityService = Depends(identity)):
    return respond(await ids.reset_password(body.email, str(request.base_url)))


@router.post("/auth/update-password")
async def update_password(body: PasswordUpdate, ids: IdentityService = Depends(identity)):
    return respond(await ids.update_password(body.access_token, body.refresh_token, body.password))


# ---- back-office ----

@admin_router.get("/properties")
async def admin_list_properties(svc: AdminService = Depends(admin_service)):
    return respond(await svc.list_properties())


@admin_router.post("/properties")
async def admin_create_property(payload: PropertyIn, svc: AdminService = Depends(admin_service)):
    return respond(await svc.create_property(payload), created=True)


@admin_router.get("/properties/{property_id}")
async def admin_get_property(property_id: int, qb: QueryBuilder = Depends(queries)):
    return respond(await qb.get_by_id(property_id))


@admin_router.put("/properties/{property_id}")
async def admin_update_property(
    property_id: int, payload: PropertyUpdate, svc: AdminService = Depends(admin_service)
):
    return respond(await svc.update_property(property_id, payload))


@admin_router.delete("/properties/{property_id}")
async def admin_delete_property(property_id: int, svc: AdminService = Depends(admin_service)):
    return respond(await svc.delete_property(property_id))


@admin_router.get("/stats")
async def admin_stats(svc: AdminService = Depends(admin_service)):
    return respond(await svc.dashboard_stats())


@admin_router.get("/inquiries")
async def admin_inquiries(
    status: Optional[str] = None,
    property_id: Optional[int] = None,
    svc: AdminService = Depends(admin_service),
):
    return respond(await svc.list_inquiries(status=status, property_id=property_id))


@admin_router.patch("/inquiries/{inquiry_id}")
async def admin_mark_inquiry(
    inquiry_id: int, body: InquiryStatusUpdate, svc: AdminService = Depends(admin_service)
):
    return respond(await svc.mark_inquiry(inquiry_id, body.status))


@admin_router.post("/images")
async def admin_upload_image(
    file: UploadFile = File(...),
    folder: str = Form("properties"),
    svc: AdminService = Depends(admin_service),
):
    content = await file.read()
    return respond(
        await svc.upload_image(file.filename or "image", content, file.content_type or "", folder=folder),
        created=True,
    )


@admin_router.delete("/images")
async def admin_delete_image(path: str, svc: AdminService = Depends(admin_service)):
    return respond(await svc.delete_image(path))
