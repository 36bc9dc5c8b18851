"""
Admin MFA: one-time passcodes sent by email.

Codes are 6 digits, stored only as a bcrypt hash, valid for 5 minutes and
for 3 verification attempts. The attempt counter is bumped in the same
update that checks it, before the hash comparison, so parallel guesses
cannot share one attempt.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from passlib.context import CryptContext
from pymongo import ReturnDocument
from pymongo.database import Database

from auth import AuthContext, create_mfa_token
from database import create_document, utcnow
from errors import CodeExpiredOrMissing, IncorrectCode, NotAuthorized, TooManyAttempts, ValidationFailed
from notifications import render_otp_email
from schemas import AdminOtpCode

logger = structlog.get_logger().bind(component="admin_mfa")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

OTP_TTL = timedelta(minutes=5)
OTP_MAX_ATTEMPTS = 3
OTP_LENGTH = 6


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def send_admin_otp(db: Database, ctx: AuthContext, mailer, now: Optional[datetime] = None) -> dict:
    if not ctx.is_admin or not ctx.email:
        raise NotAuthorized(status_code=403)
    now = now or utcnow()

    db["admin_otp_code"].update_many({"user_id": ctx.user_id, "used": False}, {"$set": {"used": True}})

    code = generate_code()
    create_document(db, "admin_otp_code", AdminOtpCode(
        user_id=ctx.user_id,
        code_hash=pwd_context.hash(code),
        expires_at=now + OTP_TTL,
        created_at=now,
    ))

    mailer.send(
        to=ctx.email,
        subject="Código de verificação - Palestra Baby Admin",
        html=render_otp_email(code, int(OTP_TTL.total_seconds() // 60)),
    )
    logger.info("otp_sent", user_id=ctx.user_id)
    return {"success": True, "expires_in": int(OTP_TTL.total_seconds())}


def verify_admin_otp(db: Database, ctx: AuthContext, code: str, now: Optional[datetime] = None) -> dict:
    if not ctx.is_admin:
        raise NotAuthorized(status_code=403)
    if not code or len(code) != OTP_LENGTH or not code.isdigit():
        raise ValidationFailed("Code must have 6 digits")
    now = now or utcnow()
    log = logger.bind(user_id=ctx.user_id)

    record = db["admin_otp_code"].find_one(
        {"user_id": ctx.user_id, "used": False, "expires_at": {"$gt": now}},
        sort=[("created_at", -1)],
    )
    if not record:
        raise CodeExpiredOrMissing("Code expired or missing. Request a new code.")

    if record["attempts"] >= OTP_MAX_ATTEMPTS:
        _burn(db, record["_id"])
        raise TooManyAttempts("Too many attempts. Request a new code.")

    record = db["admin_otp_code"].find_one_and_update(
        {"_id": record["_id"], "used": False, "attempts": {"$lt": OTP_MAX_ATTEMPTS}},
        {"$inc": {"attempts": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if record is None:
        # a parallel verification took the last attempt or consumed the code
        raise TooManyAttempts("Too many attempts. Request a new code.")

    if not pwd_context.verify(code, record["code_hash"]):
        remaining = max(OTP_MAX_ATTEMPTS - record["attempts"], 0)
        if remaining == 0:
            _burn(db, record["_id"])
        log.warning("otp_incorrect", attempts_remaining=remaining)
        raise IncorrectCode(remaining)

    consumed = db["admin_otp_code"].update_one(
        {"_id": record["_id"], "used": False}, {"$set": {"used": True, "updated_at": now}}
    )
    if consumed.modified_count != 1:
        raise CodeExpiredOrMissing("Code expired or missing. Request a new code.")

    token, expires_at = create_mfa_token(ctx.user_id, now.replace(tzinfo=timezone.utc))
    log.info("otp_verified")
    return {"verified": True, "mfa_token": token, "mfa_expires_at": expires_at.isoformat()}


def _burn(db: Database, otp_id) -> None:
    db["admin_otp_code"].update_one({"_id": otp_id}, {"$set": {"used": True, "updated_at": utcnow()}})
