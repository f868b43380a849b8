from app.core.config import settings
from app.core.database import Base, get_db, engine, SessionLocal
from app.core.security import (
    verify_password,
    get_password_hash,
    create_token,
    decode_token,
)
