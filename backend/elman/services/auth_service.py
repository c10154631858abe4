# Overview: Password hashing, login, and staff account administration.

"""
Authentication Service

WHY: Every sale, refund and stock change is attributed to a named user.
Uses bcrypt for password hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters required
- Must contain uppercase, lowercase, digit, and special char
- Session tokens managed separately (see session_service.py)
- Bootstrap and password reset are gated by BOOTSTRAP_SECRET (see routes/auth.py)
"""

import re

import bcrypt
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, UserNotFoundError, ValidationError
from ..extensions import db
from ..models import User
from ..models.auth import ROLE_CASHIER, ROLE_OWNER, USER_ROLES
from elman.time_utils import utcnow
from .session_service import revoke_all_user_sessions


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


class AlreadyBootstrappedError(ValidationError):
    def __init__(self):
        super().__init__("Already bootstrapped")


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)
    """
    if not isinstance(password, str):
        raise PasswordValidationError("Password is required")

    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() prevents timing attacks automatically.
    A malformed stored hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def _normalize_username(username) -> str:
    if not isinstance(username, str) or not username.strip():
        raise ValidationError("username is required")
    username = username.strip()
    if len(username) > 64:
        raise ValidationError("username exceeds max length 64")
    return username


def _require_role(role) -> str:
    if role not in USER_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(USER_ROLES)}")
    return role


def find_user(username: str) -> User | None:
    return db.session.query(User).filter(User.username == username).first()


def list_users() -> list[dict]:
    users = db.session.query(User).order_by(User.created_at.desc(), User.id.desc()).all()
    return [u.to_dict() for u in users]


def create_user(username: str, password: str, role: str = ROLE_CASHIER) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises PasswordValidationError for weak passwords and ConflictError when
    the username is taken.
    """
    username = _normalize_username(username)
    role = _require_role(role)

    if find_user(username) is not None:
        raise ConflictError("Username already exists", details={"username": username})

    user = User(
        username=username,
        password_hash=hash_password(password),
        role=role,
        is_active=True,
    )

    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("Username already exists", details={"username": username}) from exc
    return user


def update_user(user_id: int, *, password: str | None = None, role: str | None = None,
                is_active: bool | None = None) -> User:
    """
    Change role, password or active flag.

    Changing the password or deactivating the account revokes the user's
    open sessions.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise UserNotFoundError(user_id)

    # Validate everything before touching the row
    if role is not None:
        role = _require_role(role)
    password_hash = hash_password(password) if password is not None else None
    if is_active is not None and not isinstance(is_active, bool):
        raise ValidationError("is_active must be true or false")

    if role is not None:
        user.role = role
    if password_hash is not None:
        user.password_hash = password_hash
        revoke_all_user_sessions(user.id, reason="Password changed")
    if is_active is not None:
        user.is_active = is_active
        if not is_active:
            revoke_all_user_sessions(user.id, reason="User account deactivated")

    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Authenticate user with username and password.

    Returns User if credentials valid, None otherwise.
    Updates last_login_at timestamp on successful authentication.
    """
    if not isinstance(username, str) or not isinstance(password, str):
        return None

    user = db.session.query(User).filter(
        User.username == username.strip(),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def bootstrap_owner(username: str, password: str) -> User:
    """Create the first owner. Allowed only while no user exists."""
    if db.session.query(User.id).first() is not None:
        raise AlreadyBootstrappedError()
    return create_user(username, password, role=ROLE_OWNER)


def reset_password(username: str, new_password: str) -> User:
    """Set a new password by username and revoke the user's sessions."""
    user = find_user(_normalize_username(username))
    if user is None:
        raise UserNotFoundError(username)
    user.password_hash = hash_password(new_password)
    revoke_all_user_sessions(user.id, reason="Password reset")
    db.session.commit()
    return user
