from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt

from gradeflow.common.errors import Forbidden
from gradeflow.config import JWT_ALGORITHM, JWT_SECRET_KEY

STUDENT = "student"
TEACHER = "teacher"
ADMIN = "admin"


class UserContext:
    """
    Caller identity taken from the verified bearer token
    """
    def __init__(self, user_id: str, role: str, claims: dict = None):
        self.user_id = user_id
        self.role = role
        self.claims = claims or {}

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN

    @property
    def is_instructor(self) -> bool:
        return self.role in (TEACHER, ADMIN)

    @property
    def is_student(self) -> bool:
        return self.role == STUDENT


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or Expired Token")


async def get_current_user(authorization: str = Header(None)) -> UserContext:
    """
    Dependency: Resolves the caller from the Authorization header

    Raises:
        401: Missing, invalid or expired token
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")

    payload = decode_token(authorization.split(" ", 1)[1])
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token: missing user_id")

    return UserContext(user_id, payload.get("role", STUDENT), payload)


async def require_instructor(user: UserContext = Depends(get_current_user)) -> UserContext:
    """Dependency: teachers and admins only"""
    if not user.is_instructor:
        raise Forbidden("Access denied. Instructor privileges required.")
    return user


async def require_student(user: UserContext = Depends(get_current_user)) -> UserContext:
    """Dependency: students only"""
    if not user.is_student:
        raise Forbidden("Access denied. Only students can submit assignments.")
    return user


def ensure_owner(owner_id: str, user: UserContext, detail: str = "Not authorized to access this resource"):
    """Admins pass; anyone else must own the resource"""
    if user.is_admin:
        return
    if owner_id != user.user_id:
        raise Forbidden(detail)


def verify_assignment_ownership(assignment: dict, user: UserContext) -> dict:
    """
    Validates the caller is the assignment's instructor (or an admin)

    Raises:
        403: Not the owner
    """
    ensure_owner(
        assignment.get("instructor_id"),
        user,
        "Not authorized to grade this assignment"
    )
    return assignment
