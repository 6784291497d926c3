from typing import Optional

from fastapi import APIRouter, Request, status
from fastapi.responses import PlainTextResponse, RedirectResponse, Response

from notes_api.auth.gateway import ACCESS_TOKEN_COOKIE
from notes_api.auth.state import decode_came_from

router = APIRouter(prefix="/auth", tags=["Auth"])


# PUBLIC_INTERFACE
@router.get("/login", summary="Log in", description="Redirect to the identity provider's login page.")
def login(request: Request, came_from: Optional[str] = None) -> Response:
    """Start the authorization-code flow. ``came_from`` is a URL-safe base64 return address."""
    url = request.app.state.auth.begin_login(decode_came_from(came_from))
    return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)


# PUBLIC_INTERFACE
@router.get("/logout", summary="Log out", description="Clear the access token cookie.")
def logout() -> Response:
    response = PlainTextResponse("Logout successful")
    response.delete_cookie(ACCESS_TOKEN_COOKIE)
    return response


# PUBLIC_INTERFACE
@router.get("/callback", summary="Login callback", description="Complete login after the provider redirects back.")
def callback(request: Request, state: Optional[str] = None, code: Optional[str] = None) -> Response:
    """Exchange the code, verify the token and store it in a cookie."""
    access_token, came_from = request.app.state.auth.complete_login(state, code)
    if came_from:
        response = RedirectResponse(came_from, status_code=status.HTTP_303_SEE_OTHER)
    else:
        response = PlainTextResponse("Login successful")
    response.set_cookie(ACCESS_TOKEN_COOKIE, access_token, httponly=True, samesite="lax")
    return response
