from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from auth.models import LoginRequest, RegisterRequest, TokenResponse, UserResponse
from auth.utils import create_token, get_current_user, hash_password, normalize_email, verify_password
from db.database import get_db
from db.models import User

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(req: RegisterRequest, db: Session = Depends(get_db)):
    email = normalize_email(req.email)
    if "@" not in email:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A valid email is required")
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    user = User(
        email=email,
        name=req.name.strip(),
        password_hash=hash_password(req.password),
        role="user",
        token_version=0,
    )
    db.add(user)
    db.commit()
    return TokenResponse(access_token=create_token(user.id, role=user.role, token_version=user.token_version))


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == normalize_email(req.email)).first()
    if not user or not verify_password(req.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")
    return TokenResponse(access_token=create_token(user.id, role=user.role, token_version=user.token_version))


@router.get("/me", response_model=UserResponse)
def me(user: User = Depends(get_current_user)):
    return user
