import os
import time
import logging

import jwt
import requests
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

import studio_config
from studio_config import get_db
from studio_models import User, ImageRecord, ChatRecord, CodeRecord, MediaRecord

router = APIRouter()

logger = logging.getLogger("StudioUserService")

# Clerk session tokens are RS256 JWTs signed with the instance's JWKS.
# Without a JWKS URL, HS256 tokens signed with SECRET_KEY are accepted
# (local development and tests).
SECRET_KEY = os.getenv("SECRET_KEY", "genstudio-dev-secret-key-change-me-2025")
CLERK_ISSUER = (os.getenv("CLERK_ISSUER") or "").rstrip("/")
CLERK_JWKS_URL = os.getenv("CLERK_JWKS_URL") or (f"{CLERK_ISSUER}/.well-known/jwks.json" if CLERK_ISSUER else "")
CLERK_SECRET_KEY = os.getenv("CLERK_SECRET_KEY")
CLERK_API_BASE = os.getenv("CLERK_API_BASE", "https://api.clerk.com/v1").rstrip("/")

_jwks_client = None


def _get_jwks_client():
    global _jwks_client
    if _jwks_client is None:
        _jwks_client = jwt.PyJWKClient(CLERK_JWKS_URL)
    return _jwks_client


def _decode_token(token: str) -> dict | None:
    try:
        if CLERK_JWKS_URL:
            signing_key = _get_jwks_client().get_signing_key_from_jwt(token)
            options = {"verify_aud": False}
            kwargs = {"issuer": CLERK_ISSUER} if CLERK_ISSUER else {}
            return jwt.decode(token, signing_key.key, algorithms=["RS256"], options=options, **kwargs)
        return jwt.decode(token, SECRET_KEY, algorithms=["HS256"], options={"verify_aud": False})
    except jwt.ExpiredSignatureError:
        return None
    except jwt.PyJWKClientError as e:
        logger.error("JWKS lookup failed: %s", e)
        return None
    except jwt.InvalidTokenError:
        return None


def _get_bearer_token(request: Request) -> str | None:
    auth = request.headers.get("Authorization") or ""
    parts = auth.split(" ", 1)
    if len(parts) != 2:
        return None
    if parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def get_current_user(request: Request) -> tuple[str, dict]:
    """(user_id, claims) for the bearer token, or 401."""
    token = _get_bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Missing Token")
    claims = _decode_token(token)
    if not claims or not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid Token")
    return str(claims["sub"]), claims


def has_plan(claims: dict, plan: str) -> bool:
    """
    Clerk puts the active plans in the "pla" claim as a comma separated list
    of scope:slug entries ("u:pro", "o:team"). "plan"/"plans" claims from
    custom session templates are honoured too.
    """
    if not plan or not isinstance(claims, dict):
        return False
    pla = claims.get("pla")
    if isinstance(pla, str):
        for entry in pla.split(","):
            slug = entry.strip().split(":", 1)[-1]
            if slug == plan:
                return True
    for key in ("plan", "plans"):
        v = claims.get(key)
        if isinstance(v, str) and plan in [p.strip() for p in v.split(",")]:
            return True
        if isinstance(v, (list, tuple)) and plan in v:
            return True
    return False


def _display_name(user_id: str, clerk_user: dict | None) -> tuple[str | None, str]:
    fallback = f"user_{user_id[:8]}"
    if not clerk_user:
        return None, fallback
    email = None
    for addr in clerk_user.get("email_addresses") or []:
        if isinstance(addr, dict) and addr.get("email_address"):
            email = addr["email_address"]
            break
    first = (clerk_user.get("first_name") or "").strip()
    last = (clerk_user.get("last_name") or "").strip()
    if first and last:
        return email, f"{first} {last}"
    if first:
        return email, first
    if email:
        return email, email.split("@")[0]
    return email, fallback


def _fetch_clerk_user(user_id: str) -> dict | None:
    if not CLERK_SECRET_KEY:
        return None
    started_at = time.time()
    try:
        r = requests.get(
            f"{CLERK_API_BASE}/users/{user_id}",
            headers={"Authorization": f"Bearer {CLERK_SECRET_KEY}"},
            timeout=5,
        )
        logger.info("REMOTE clerk get_user status=%s ms=%s", r.status_code, int((time.time() - started_at) * 1000))
        r.raise_for_status()
        return r.json()
    except Exception as e:
        logger.warning("Clerk fetch failed, using fallback username: %s", e)
        return None


def ensure_user_exists(db: Session, user_id: str) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user:
        return user

    email, name = _display_name(user_id, _fetch_clerk_user(user_id))
    user = User(id=user_id, email=email, name=name, count=0)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("DB write user created user_id=%s", user_id)
    return user


def get_generation_count(db: Session, user_id: str) -> int:
    count = db.query(User.count).filter(User.id == user_id).scalar()
    return int(count or 0)


def increment_generation_count(db: Session, user_id: str, increment_by: int = 1) -> None:
    db.query(User).filter(User.id == user_id).update(
        {User.count: User.count + int(increment_by)}, synchronize_session=False
    )
    db.commit()
    logger.info("DB write user count user_id=%s increment_by=%s", user_id, int(increment_by))


def gate_generation(request: Request, db: Session) -> tuple[str, dict]:
    """
    Authenticate, make sure the user row exists and refuse with 403 once a
    user without the pro plan has used up the free generations.
    """
    user_id, claims = get_current_user(request)
    ensure_user_exists(db, user_id)
    limit = studio_config.MAX_GENERATIONS
    used = get_generation_count(db, user_id)
    if not has_plan(claims, studio_config.PRO_PLAN) and used >= limit:
        logger.info("LIMIT user_id=%s reached generation limit %s/%s", user_id, used, limit)
        raise HTTPException(status_code=403, detail="you have exceeded your generation limit")
    return user_id, claims


@router.get("/api/user/me")
def me(request: Request, db=Depends(get_db)):
    user_id, claims = get_current_user(request)
    user = ensure_user_exists(db, user_id)
    pro = has_plan(claims, studio_config.PRO_PLAN)
    limit = studio_config.MAX_GENERATIONS
    used = int(user.count or 0)
    return {
        **user.to_dict(),
        "limit": None if pro else limit,
        "remaining": None if pro else max(0, limit - used),
        "pro": pro,
    }


_HISTORY_MODELS = {
    "chat": ChatRecord,
    "code": CodeRecord,
    "image": ImageRecord,
    "media": MediaRecord,
}


@router.get("/api/user/history")
def history(request: Request, kind: str = "chat", limit: int = 20, offset: int = 0, db=Depends(get_db)):
    user_id, _ = get_current_user(request)
    model = _HISTORY_MODELS.get(kind)
    if model is None:
        raise HTTPException(status_code=400, detail=f"Unknown kind: {kind}")
    lim = max(1, min(limit, 100))
    off = max(0, offset)
    q = db.query(model).filter(model.user_id == user_id)
    rows = q.order_by(model.created_at.desc()).offset(off).limit(lim).all()
    total = q.count()
    logger.info("DB read history kind=%s count=%s user_id=%s", kind, len(rows), user_id)
    return {"items": [r.to_dict() for r in rows], "total": total, "limit": lim, "offset": off}
