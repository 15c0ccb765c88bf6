# assessment/services/auth.py
import logging
from typing import Dict

from jose import JWTError, jwt

from assessment.config import settings

logger = logging.getLogger(__name__)

JWT_SECRET = settings.jwt_secret
JWT_ISSUER = settings.jwt_issuer
JWT_AUDIENCE = settings.jwt_audience

if not JWT_SECRET:
    raise RuntimeError("JWT_SECRET 환경변수가 설정되어 있지 않습니다.")


def _role_of(claims: dict) -> str | None:
    # role 은 최상위 또는 app_metadata 안에 올 수 있음
    app_metadata = claims.get("app_metadata") or {}
    return app_metadata.get("role") or claims.get("role")


async def verify_bearer(authorization: str | None) -> Dict[str, str | None]:
    """
    - Authorization: Bearer <access_token> 헤더에서 토큰을 꺼내서
    - JWT secret(HS256)으로 검증하고
    - 기본적인 클레임(sub, email, role)을 반환한다.
    """
    if not authorization:
        raise ValueError("missing Authorization header")

    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise ValueError("invalid Authorization header")

    token = parts[1].strip()
    if not token:
        raise ValueError("invalid Authorization header")

    decode_kwargs = {
        "key": JWT_SECRET,
        "algorithms": ["HS256"],
    }
    options = {}
    if JWT_AUDIENCE:
        decode_kwargs["audience"] = JWT_AUDIENCE
    else:
        options["verify_aud"] = False
    if JWT_ISSUER:
        decode_kwargs["issuer"] = JWT_ISSUER
    if options:
        decode_kwargs["options"] = options

    try:
        claims = jwt.decode(token, **decode_kwargs)
    except JWTError as e:
        # get_current_user 쪽에서 401로 바꿔서 응답
        logger.info("JWT decode failed: %s", e)
        raise ValueError("invalid token") from e

    user_id = claims.get("sub")
    if not user_id:
        raise ValueError("invalid token: missing sub")

    return {
        "user_id": user_id,
        "email": claims.get("email"),
        "role": _role_of(claims),
    }
