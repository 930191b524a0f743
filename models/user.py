from pydantic import BaseModel, EmailStr


class UserCreate(BaseModel):
    email: EmailStr
    password: str


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class User(BaseModel):
    id: int
    email: EmailStr


class Principal(BaseModel):
    """The authenticated user an operation runs on behalf of."""
    id: int
    email: str
