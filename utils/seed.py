from models import db
from models.user import User
from security.credentials import hash_password, normalize_username


def upsert_admin(email: str, password: str = None, full_name: str = None, is_admin: bool = True) -> User:
    """
    Creates the user when missing, otherwise updates the flag (and the
    password/name when given). Idempotent.
    """
    email = normalize_username(email)
    user = User.query.filter_by(email=email).first()
    if user is None:
        if not password:
            raise ValueError("A password is required to create a user")
        user = User(email=email, password_hash=hash_password(password))
        db.session.add(user)
    elif password:
        user.password_hash = hash_password(password)

    if full_name is not None:
        user.full_name = full_name
    user.is_admin = is_admin
    db.session.commit()
    return user
