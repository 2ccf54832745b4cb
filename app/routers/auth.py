from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from typing import Optional
from datetime import datetime
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from sqlmodel import Session, select
from pydantic import BaseModel

from app.db.session import get_session
from app.models.user import User
from app.core.config import settings
from app.core.security import decode_access_token
from app.core.exceptions import CartMergeFailure
from app.core.logging import get_logger
from app.services.auth import AuthService
from app.services.cart import CartService, get_cart_service
from app.services.cart_identity import clear_guest_cookie

logger = get_logger(__name__)

router = APIRouter()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/v1/auth/token")
oauth2_scheme_optional = OAuth2PasswordBearer(tokenUrl="api/v1/auth/token", auto_error=False)


class Token(BaseModel):
    access_token: str
    token_type: str

class UserCreate(BaseModel):
    email: str
    password: str
    name: Optional[str] = None

class UserOut(BaseModel):
    id: int
    email: str
    name: Optional[str] = None
    is_active: bool
    created_at: datetime

def get_auth_service(session: Session = Depends(get_session)) -> AuthService:
    return AuthService(session)

@router.post("/register", response_model=UserOut)
def register(user_in: UserCreate, service: AuthService = Depends(get_auth_service)):
    return service.register_user(user_in.email, user_in.password, name=user_in.name)

@router.post("/token", response_model=Token)
def login_for_access_token(
    request: Request,
    response: Response,
    form_data: OAuth2PasswordRequestForm = Depends(),
    service: AuthService = Depends(get_auth_service),
    cart_service: CartService = Depends(get_cart_service),
):
    user, error_message = service.authenticate_user(form_data.username, form_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_message,
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Fold the guest cart into the account before the guest cookie goes away
    guest_session_id = request.cookies.get(settings.GUEST_SESSION_COOKIE)
    if guest_session_id:
        try:
            cart_service.merge_guest_cart(user.id, guest_session_id)
        except CartMergeFailure:
            # cookie stays so the guest cart can be merged on the next attempt
            raise HTTPException(status_code=500, detail="Login failed, please try again")
        clear_guest_cookie(response)

    logger.info("User %s logged in", user.id)
    return {"access_token": service.issue_token(user), "token_type": "bearer"}

def _user_from_token(token: str, session: Session) -> Optional[User]:
    username = decode_access_token(token)
    if username is None:
        return None
    user = session.exec(select(User).where(User.email == username)).first()
    if user is None or not user.is_active:
        return None
    return user

async def get_current_user(token: str = Depends(oauth2_scheme), session: Session = Depends(get_session)) -> User:
    user = _user_from_token(token, session)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user

async def get_current_user_optional(token: Optional[str] = Depends(oauth2_scheme_optional), session: Session = Depends(get_session)) -> Optional[User]:
    """Verified user, or None when the token is missing, expired or invalid."""
    if not token:
        return None
    return _user_from_token(token, session)

@router.get("/me", response_model=UserOut)
def read_me(current_user: User = Depends(get_current_user)):
    return current_user
