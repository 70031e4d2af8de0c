from sqlalchemy.orm import Session

from ChatBackend.models.user_model import User


# Look up a user by already-normalized email
def get_user_by_email(session: Session, email: str):
    return session.query(User).filter(User.email == email).first()


def get_user_by_id(session: Session, user_id: int):
    return session.get(User, user_id)


# Create a user row; the caller owns the transaction
def create_user(session: Session, name: str, email: str, password_hash: str):
    user = User(name=name, email=email, password_hash=password_hash)
    session.add(user)
    session.flush()
    return user
