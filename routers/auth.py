from fastapi import APIRouter, HTTPException, status
from passlib.context import CryptContext
from models.user import UserCreate, UserLogin, User
from utils.jwt import create_access_token
from utils.response import api_response
from utils.users import create_user, get_user
import logging
from utils.logging_config import mask_email

router = APIRouter(prefix="/auth", tags=["auth"])
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
logger = logging.getLogger("api.auth")


def get_password_hash(password):
	return pwd_context.hash(password)


def verify_password(plain_password, hashed_password):
	return pwd_context.verify(plain_password, hashed_password)


@router.post("/register")
def register(user: UserCreate):
	email = user.email.lower()
	created = create_user(email, get_password_hash(user.password))
	if created is None:
		logger.warning("register_attempt_existing_email", extra={"email": mask_email(email)})
		raise HTTPException(status_code=400, detail="Email already registered")
	logger.info("user_registered", extra={"email": mask_email(email), "user_id": created["id"]})
	return api_response(data=User(id=created["id"], email=email).model_dump(), message="User registered", status_code=201)


@router.post("/login")
def login(user: UserLogin):
	db_user = get_user(user.email.lower())
	if not db_user or not verify_password(user.password, db_user["hashed_password"]):
		logger.warning("login_failed", extra={"email": mask_email(user.email)})
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
	token = create_access_token({"sub": db_user["email"], "id": db_user["id"]})
	logger.info("login_success", extra={"email": mask_email(db_user["email"])})
	return api_response(
		data={"access_token": token, "token_type": "bearer"},
		message="Login successful",
		status_code=200,
	)
