import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from school_backend.auth import jwt_handler
from school_backend.auth.dependencies import get_current_user
from school_backend.auth.passwords import verify_password
from school_backend.database import get_db
from school_backend.models.user import User

router = APIRouter(tags=["auth"])
logger = logging.getLogger(__name__)


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


@router.post("/login", response_model=TokenResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == data.email).first()
    if user is None or not verify_password(data.password, user.hashed_password):
        logger.info("Failed login for %s", data.email)
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if user.is_archived:
        raise HTTPException(status_code=403, detail="User is archived")

    token = jwt_handler.create_access_token(subject=user.email, user_type=user.user_type)
    return TokenResponse(access_token=token)


@router.get("/me")
def me(current_user: User = Depends(get_current_user)):
    return {
        "id": current_user.id,
        "email": current_user.email,
        "userType": current_user.user_type,
        "firstName": current_user.first_name,
        "lastName": current_user.last_name,
    }
