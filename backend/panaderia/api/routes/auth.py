from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from panaderia.api.deps import get_current_user
from panaderia.core.logging_config import get_logger
from panaderia.core.security import create_access_token, verify_password
from panaderia.db.session import get_db
from panaderia.models.user import User
from panaderia.schemas.auth import LoginRequest, TokenResponse
from panaderia.schemas.user import UserRead
from panaderia.services.rbac import parse_permissions


router = APIRouter()
logger = get_logger("api.auth")


async def parse_request_payload(request: Request) -> dict:
    content_type = (request.headers.get("content-type") or "").split(";")[0].strip().lower()

    raw = (await request.body()).decode("utf-8", errors="ignore")
    if not raw:
        return {}

    if content_type in {"application/x-www-form-urlencoded", "text/plain", ""}:
        parsed = parse_qs(raw, keep_blank_values=True)
        payload = {key: values[0] if values else "" for key, values in parsed.items()}
        # OAuth2 password flow sends the email as "username"
        if "email" not in payload and "username" in payload:
            payload["email"] = payload["username"]
        return payload

    try:
        return await request.json()
    except ValueError:
        return {}


@router.post("/login", response_model=TokenResponse)
async def login(request: Request, db: Session = Depends(get_db)) -> TokenResponse:
    payload_data = await parse_request_payload(request)
    try:
        payload = LoginRequest(**payload_data)
    except (TypeError, ValidationError):
        raise HTTPException(status_code=422, detail="Credenciales invalidas")

    user = db.scalar(select(User).where(User.email == payload.email.strip().lower()))
    if not user or not user.is_active or not verify_password(payload.password, user.hashed_password):
        logger.info("Intento de acceso fallido para %s", payload.email)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Credenciales invalidas")

    token = create_access_token(
        email=user.email,
        user_id=user.id,
        role=user.role.name if user.role else "",
        token_version=user.token_version,
    )
    return TokenResponse(access_token=token)


@router.get("/me", response_model=UserRead)
def me(current_user: User = Depends(get_current_user)) -> UserRead:
    role = current_user.role
    return UserRead(
        id=current_user.id,
        email=current_user.email,
        full_name=current_user.full_name,
        role=role.name if role else "Sin rol",
        permissions=parse_permissions(role.permissions) if role else [],
    )
