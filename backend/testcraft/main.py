"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the testcraft backend.
Controllers are intentionally thin: they accept requests, delegate to
services, and return JSON responses.

JSON endpoints live under `/api`:
- POST /api/auth/register, /api/auth/login, /api/auth/logout
- GET|PATCH /api/auth/me
- POST /api/auth/reset-password, /api/auth/reset-password/confirm
- GET|POST /api/tests, GET|PATCH|DELETE /api/tests/{id}
- GET|POST /api/tests/{id}/questions
- PUT|DELETE /api/questions/{id}, PUT|DELETE /api/questions/{id}/answer

Every other GET is a page route and passes through the navigation guard.
"""

import json
import logging
import time
import uuid
from typing import Optional

from fastapi import FastAPI, Depends, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from . import database, services
from .auth import extract_token, get_current_user, get_store
from .config import settings
from .errors import TestcraftError
from .guard import ROUTE_PATHS, evaluate_navigation
from .schemas import (
    CorrectAnswerIn, LoginIn, ProfileUpdateIn, QuestionIn, QuestionUpdateIn,
    RegisterIn, ResetConfirmIn, ResetRequestIn, TestIn, TestUpdateIn, TokenOut,
)
from .store import Profile, SQLStore

app = FastAPI(title="testcraft")
logger = logging.getLogger("testcraft.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

GUARD_EXEMPT_PREFIXES = ("/api", "/docs", "/redoc", "/openapi.json", "/health", "/static")

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

database.create_db_and_tables()


def _evaluate_page_request(path: str, token: Optional[str]):
    with Session(database.engine) as db:
        return evaluate_navigation(path, SQLStore(db, token))


@app.middleware("http")
async def navigation_guard_middleware(request: Request, call_next):
    path = request.url.path
    if request.method != "GET" or path.startswith(GUARD_EXEMPT_PREFIXES):
        return await call_next(request)
    decision = await run_in_threadpool(_evaluate_page_request, path, extract_token(request))
    if decision.allowed:
        request.state.profile = decision.profile
        response = await call_next(request)
    else:
        logger.info("navigation_redirect %s", json.dumps({"path": path, "to": decision.redirect_to}))
        response = RedirectResponse(url=ROUTE_PATHS[decision.redirect_to], status_code=303)
    if decision.invalidate_session:
        response.delete_cookie(settings.AUTH_COOKIE_NAME)
    return response


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    if request.url.path.startswith("/api"):
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                },
                ensure_ascii=True,
            ),
        )
    return response


@app.exception_handler(TestcraftError)
async def testcraft_error_handler(request: Request, exc: TestcraftError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# -- auth -------------------------------------------------------------

@app.post('/api/auth/register')
def register(payload: RegisterIn, store: SQLStore = Depends(get_store)):
    """Register a new user and return its id and email."""
    try:
        user = services.AuthService(store).register(
            payload.email, payload.password, payload.first_name, payload.last_name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'id': user.id, 'email': user.email}


@app.post('/api/auth/login', response_model=TokenOut)
def login(payload: LoginIn, response: Response, store: SQLStore = Depends(get_store)):
    """Authenticate a user and return a JWT access token.

    The token is also set as an HTTP-only cookie so page navigation in
    the browser carries the session.
    """
    token = services.AuthService(store).authenticate(payload.email, payload.password)
    if not token:
        raise HTTPException(status_code=401, detail='invalid credentials')
    response.set_cookie(
        settings.AUTH_COOKIE_NAME, token,
        httponly=True, samesite="lax", max_age=settings.JWT_EXPIRE_HOURS * 3600,
    )
    return TokenOut(access_token=token)


@app.post('/api/auth/logout')
def logout(response: Response, store: SQLStore = Depends(get_store)):
    """Revoke the caller's tokens and clear the auth cookie."""
    services.AuthService(store).logout()
    response.delete_cookie(settings.AUTH_COOKIE_NAME)
    return {'success': True}


@app.get('/api/auth/me')
def me(user: Profile = Depends(get_current_user)):
    return user.to_dict()


@app.patch('/api/auth/me')
def update_me(payload: ProfileUpdateIn, store: SQLStore = Depends(get_store),
              user: Profile = Depends(get_current_user)):
    """Update name fields and free-form profile metadata."""
    try:
        profile = services.AuthService(store).update_profile(payload.model_dump(exclude_unset=True))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return profile.to_dict()


@app.post('/api/auth/reset-password', status_code=202)
def reset_password(payload: ResetRequestIn, store: SQLStore = Depends(get_store)):
    """Start a password reset; the answer does not reveal whether the email exists."""
    services.AuthService(store).request_password_reset(payload.email)
    return {'status': 'accepted'}


@app.post('/api/auth/reset-password/confirm')
def confirm_reset_password(payload: ResetConfirmIn, store: SQLStore = Depends(get_store)):
    try:
        services.AuthService(store).confirm_password_reset(payload.token, payload.password)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'success': True}


# -- tests ------------------------------------------------------------

@app.get('/api/tests')
def list_tests(page: int = 1, items_per_page: int = -1, sort_by: Optional[str] = None,
               sort_desc: bool = False, search: Optional[str] = None,
               store: SQLStore = Depends(get_store), user: Profile = Depends(get_current_user)):
    """List the caller's tests, newest first unless `sort_by` is given."""
    sort = [{'key': sort_by, 'order': 'desc' if sort_desc else 'asc'}] if sort_by else None
    try:
        return services.TestService(store).list_tests(page, items_per_page, sort, search)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post('/api/tests', status_code=201)
def create_test(payload: TestIn, store: SQLStore = Depends(get_store),
                user: Profile = Depends(get_current_user)):
    try:
        test = services.TestService(store).create_test(payload.title, payload.description)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return services.serialize_test(test)


@app.get('/api/tests/{test_id}')
def get_test(test_id: int, store: SQLStore = Depends(get_store), user: Profile = Depends(get_current_user)):
    return services.serialize_test(services.TestService(store).get_test(test_id))


@app.patch('/api/tests/{test_id}')
def update_test(test_id: int, payload: TestUpdateIn, store: SQLStore = Depends(get_store),
                user: Profile = Depends(get_current_user)):
    try:
        test = services.TestService(store).update_test(test_id, payload.model_dump(exclude_unset=True))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return services.serialize_test(test)


@app.delete('/api/tests/{test_id}')
def delete_test(test_id: int, store: SQLStore = Depends(get_store), user: Profile = Depends(get_current_user)):
    """Delete a test with all of its questions, choices and answers."""
    services.TestService(store).delete_test(test_id)
    return {'success': True}


# -- questions --------------------------------------------------------

@app.get('/api/tests/{test_id}/questions')
def list_questions(test_id: int, store: SQLStore = Depends(get_store),
                   user: Profile = Depends(get_current_user)):
    """Return the test's questions with their answer choices."""
    return services.QuestionService(store).list_questions(test_id)


@app.post('/api/tests/{test_id}/questions', status_code=201)
def create_question(test_id: int, payload: QuestionIn, store: SQLStore = Depends(get_store),
                    user: Profile = Depends(get_current_user)):
    """Create a question, its answer choices and optionally its correct answer."""
    try:
        q = services.QuestionService(store).create_question(
            test_id, payload.text, payload.answer_choices, payload.correct_index)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'id': q.id, 'test_id': q.test_id, 'text': q.text}


@app.put('/api/questions/{question_id}')
def update_question(question_id: int, payload: QuestionUpdateIn, store: SQLStore = Depends(get_store),
                    user: Profile = Depends(get_current_user)):
    """Update a question and reconcile its answer choices by position.

    A partially applied reconciliation answers 409 with the operations
    that were applied, the one that failed and whether the question text
    was written.
    """
    try:
        result = services.QuestionService(store).update_question(
            question_id, payload.text, payload.answer_choices)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not result.ok:
        return JSONResponse(status_code=409, content=result.to_dict())
    return result.to_dict()


@app.delete('/api/questions/{question_id}')
def delete_question(question_id: int, store: SQLStore = Depends(get_store),
                    user: Profile = Depends(get_current_user)):
    services.QuestionService(store).delete_question(question_id)
    return {'success': True}


@app.put('/api/questions/{question_id}/answer')
def set_answer(question_id: int, payload: CorrectAnswerIn, store: SQLStore = Depends(get_store),
               user: Profile = Depends(get_current_user)):
    """Mark one of the question's choices as the correct answer."""
    answer = services.QuestionService(store).set_correct_answer(question_id, payload.choice_id)
    return {'question_id': answer.question_id, 'choice_id': answer.choice_id}


@app.delete('/api/questions/{question_id}/answer')
def clear_answer(question_id: int, store: SQLStore = Depends(get_store),
                 user: Profile = Depends(get_current_user)):
    services.QuestionService(store).clear_correct_answer(question_id)
    return {'success': True}


# -- pages ------------------------------------------------------------

def _page(title: str, body: str = "", status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(f"""
    <!DOCTYPE html>
    <html>
    <head><meta charset="UTF-8" /><title>{title} · testcraft</title></head>
    <body><h1>{title}</h1>{body}</body>
    </html>
    """, status_code=status_code)


@app.get("/", response_class=HTMLResponse)
def home():
    """Minimal homepage for quick manual testing."""
    return _page("testcraft", '<p><a href="/login">Log in</a> or <a href="/register">register</a>.</p>')


@app.get("/login", response_class=HTMLResponse)
def login_page():
    return _page("Log in")


@app.get("/register", response_class=HTMLResponse)
def register_page():
    return _page("Register")


@app.get("/dashboard", response_class=HTMLResponse)
def dashboard_page():
    return _page("Dashboard")


@app.get("/dashboard/test/{test_id}/questions", response_class=HTMLResponse)
def question_management_page(test_id: int):
    return _page("Questions", f'<div data-test-id="{test_id}"></div>')


@app.get("/dashboard/test/{test_id}/edit", response_class=HTMLResponse)
def edit_test_page(test_id: int):
    return _page("Edit test", f'<div data-test-id="{test_id}"></div>')


@app.get("/admin", response_class=HTMLResponse)
def admin_page():
    return _page("Administration")


@app.get("/forbidden", response_class=HTMLResponse)
def forbidden_page():
    return _page("Forbidden", status_code=403)


@app.get("/not-found", response_class=HTMLResponse)
def not_found_page():
    return _page("Not found", status_code=404)


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("testcraft.main:app", host="127.0.0.1", port=8000, reload=True)
