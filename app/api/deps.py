from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.core.errors import BookingError
from app.core.security import decode_token
from app.models.user import User, ADMIN_ROLES
from app.services.payment_gateway import PaymentGateway, get_payment_gateway

bearer = HTTPBearer(auto_error=False)

def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(creds.credentials)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")
    user_id = payload.get("sub")
    user = db.get(User, user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return user

def require_roles(*roles: str):
    def _guard(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return _guard

require_admin = require_roles(*ADMIN_ROLES)

def get_gateway() -> PaymentGateway:
    try:
        return get_payment_gateway()
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))

def http_error(e: BookingError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.to_detail())
