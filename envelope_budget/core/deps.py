from __future__ import annotations

from fastapi import Header, HTTPException


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Resolve the authenticated user's stable identifier.

    Session handling lives in front of this service; it forwards the signed-in
    user as ``X-User-Id``. No header means nobody is signed in. Tests may
    override this dependency to act as different users.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user_id
