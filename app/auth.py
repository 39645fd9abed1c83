"""Session identity, GitHub OAuth client and the access gate.

The signed-in user lives in the Starlette session under ``"user"``. Routes
never read the session directly: they depend on ``get_current_user`` and pass
the resulting ``UserContext`` into the services.
"""
from dataclasses import dataclass
from typing import Optional
from authlib.integrations.starlette_client import OAuth
from fastapi import Request
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware
from app.config import settings
from app.constants import ANONYMOUS_EMAIL
from app.logging_config import get_logger, log_context

logger = get_logger(__name__)

SESSION_USER_KEY = "user"

GATED_PATHS = frozenset({"/", "/api/questions"})
"""Paths that require an allow-listed signed-in user."""

SIGNIN_PATH = "/api/auth/signin"
UNAUTHORIZED_PATH = "/unauthorized"

oauth = OAuth()
oauth.register(
    name="github",
    client_id=settings.GITHUB_CLIENT_ID,
    client_secret=settings.GITHUB_CLIENT_SECRET,
    access_token_url="https://github.com/login/oauth/access_token",
    authorize_url="https://github.com/login/oauth/authorize",
    api_base_url="https://api.github.com/",
    client_kwargs={"scope": "read:user user:email"},
)


@dataclass(frozen=True)
class UserContext:
    """Identity of the caller for one request."""
    email: str
    name: Optional[str] = None
    login: Optional[str] = None
    image: Optional[str] = None

    @property
    def username(self) -> Optional[str]:
        return self.name or self.login

    @property
    def is_anonymous(self) -> bool:
        return self.email == ANONYMOUS_EMAIL


ANONYMOUS_USER = UserContext(email=ANONYMOUS_EMAIL)


def user_from_session(session: dict) -> Optional[UserContext]:
    data = session.get(SESSION_USER_KEY)
    if not data:
        return None
    return UserContext(
        email=data.get("email") or ANONYMOUS_EMAIL,
        name=data.get("name"),
        login=data.get("login"),
        image=data.get("image"),
    )


def get_current_user(request: Request) -> UserContext:
    """FastAPI dependency: the signed-in user, or the anonymous user."""
    return user_from_session(request.session) or ANONYMOUS_USER


def is_allowed(user: UserContext) -> bool:
    return user.username in settings.ALLOWED_USERS


class AccessGateMiddleware(BaseHTTPMiddleware):
    """Restrict gated paths to allow-listed users.

    Requests without a session user are redirected to sign-in, signed-in users
    outside the allow-list to the unauthorized page. Other paths pass through.
    Must be installed inside SessionMiddleware.
    """

    async def dispatch(self, request: Request, call_next):
        if request.url.path not in GATED_PATHS:
            return await call_next(request)

        user = user_from_session(request.session)
        if user is None:
            logger.debug(f"Unauthenticated request to {request.url.path}, redirecting to sign-in")
            return RedirectResponse(url=SIGNIN_PATH)

        if not is_allowed(user):
            logger.warning(
                f"User {user.username!r} not allowed on {request.url.path}",
                extra=log_context(user)
            )
            return RedirectResponse(url=UNAUTHORIZED_PATH)

        return await call_next(request)
