"""GitHub sign-in, session inspection and sign-out endpoints."""
from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from app.auth import SESSION_USER_KEY, oauth, user_from_session
from app.config import settings
from app.logging_config import get_logger, log_context

logger = get_logger(__name__)

router = APIRouter(tags=["auth"])


async def fetch_github_profile(token) -> dict:
    """
    Read the GitHub profile for an access token.

    GitHub omits the email when the user keeps it private; in that case the
    primary verified address from /user/emails is used.
    """
    resp = await oauth.github.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()

    email = profile.get("email")
    if not email:
        emails_resp = await oauth.github.get("user/emails", token=token)
        if emails_resp.status_code == 200:
            for entry in emails_resp.json():
                if entry.get("primary") and entry.get("verified"):
                    email = entry.get("email")
                    break

    return {
        "name": profile.get("name"),
        "login": profile.get("login"),
        "email": email,
        "image": profile.get("avatar_url"),
    }


@router.get("/api/auth/signin")
async def signin(request: Request):
    """Redirect to GitHub's authorize page."""
    if not settings.github_configured:
        raise HTTPException(status_code=503, detail="GitHub sign-in is not configured")
    redirect_uri = request.url_for("github_callback")
    return await oauth.github.authorize_redirect(request, str(redirect_uri))


@router.api_route("/api/auth/callback/github", methods=["GET", "POST"], name="github_callback")
async def github_callback(request: Request):
    """Complete the OAuth exchange and store the profile in the session."""
    try:
        token = await oauth.github.authorize_access_token(request)
        profile = await fetch_github_profile(token)
    except OAuthError as e:
        logger.warning(f"GitHub OAuth failed: {e.error}")
        raise HTTPException(status_code=401, detail="GitHub sign-in failed")
    except Exception as e:
        logger.error(f"GitHub profile lookup failed: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail="GitHub sign-in failed")

    request.session[SESSION_USER_KEY] = profile
    logger.info(f"Signed in {profile.get('login')}", extra=log_context(user_from_session(request.session)))
    return RedirectResponse(url="/", status_code=303)


@router.get("/api/auth/session")
async def get_session(request: Request):
    """Current session user, or an empty object when signed out."""
    user = user_from_session(request.session)
    if user is None:
        return {}
    return {
        "user": {
            "name": user.name,
            "login": user.login,
            "email": user.email,
            "image": user.image,
        }
    }


@router.api_route("/api/auth/signout", methods=["GET", "POST"])
async def signout(request: Request):
    request.session.clear()
    return RedirectResponse(url="/api/auth/session", status_code=303)


@router.get("/unauthorized")
async def unauthorized():
    return JSONResponse(
        status_code=403,
        content={"detail": "Your account is not allowed to use this application"}
    )
