import uuid

from fastapi.testclient import TestClient
from sqlmodel import Session, select

from testcraft import models
from testcraft.database import engine
from testcraft.main import app


def _email():
    return f"{uuid.uuid4().hex[:10]}@example.com"


def _signup(client, is_admin=False):
    """Register and log in a fresh user; the client keeps the auth cookie."""
    email = _email()
    r = client.post('/api/auth/register', json={'email': email, 'password': 'pass1234', 'first_name': 'Test', 'last_name': 'User'})
    assert r.status_code == 200
    if is_admin:
        with Session(engine) as session:
            user = session.exec(select(models.User).where(models.User.email == email)).one()
            user.is_admin = True
            session.add(user)
            session.commit()
    r2 = client.post('/api/auth/login', json={'email': email, 'password': 'pass1234'})
    assert r2.status_code == 200
    return {'Authorization': f"Bearer {r2.json()['access_token']}"}


def test_register_login_and_me():
    client = TestClient(app)
    headers = _signup(client)
    r = client.get('/api/auth/me', headers=headers)
    assert r.status_code == 200
    assert r.json()['full_name'] == 'Test User'
    assert r.json()['is_admin'] is False
    assert r.json()['role'] is None
    # duplicate email and bad credentials
    email = r.json()['email']
    assert client.post('/api/auth/register', json={'email': email, 'password': 'pass1234'}).status_code == 400
    assert client.post('/api/auth/login', json={'email': email, 'password': 'nope'}).status_code == 401
    r = client.post('/api/auth/login', json={'email': email, 'password': 'pass1234'})
    assert list(r.json()) == ['access_token']


def test_protected_endpoints_reject_missing_token():
    client = TestClient(app)
    assert client.get('/api/auth/me').status_code == 401
    assert client.get('/api/tests').status_code == 401
    assert client.post('/api/tests', json={'title': 'x'}).status_code == 401
    r = client.get('/api/tests', headers={'Authorization': 'Bearer invalid.token.here'})
    assert r.status_code == 401


def test_test_and_question_flow():
    client = TestClient(app)
    headers = _signup(client)

    r = client.post('/api/tests', json={'title': 'Geography', 'description': 'Capitals'}, headers=headers)
    assert r.status_code == 201
    test_id = r.json()['id']

    r = client.post(f'/api/tests/{test_id}/questions', headers=headers,
                    json={'text': 'Capital of France?', 'answer_choices': [{'text': 'Paris'}, {'text': 'Lyon'}], 'correct_index': 0})
    assert r.status_code == 201
    question_id = r.json()['id']

    questions = client.get(f'/api/tests/{test_id}/questions', headers=headers).json()
    choices = questions[0]['answer_choices']
    assert [c['text'] for c in choices] == ['Paris', 'Lyon']
    assert questions[0]['correct_choice_id'] == choices[0]['id']

    r = client.put(f'/api/questions/{question_id}', headers=headers,
                   json={'text': 'Capital of France?', 'answer_choices': [{'text': 'Paris'}, {'text': 'Marseille'}, {'text': 'Nice'}]})
    assert r.status_code == 200
    body = r.json()
    assert body['ok'] is True
    assert body['question_text_updated'] is True
    assert [op['op'] for op in body['applied']] == ['update', 'insert']

    r = client.put(f'/api/questions/{question_id}/answer', headers=headers, json={'choice_id': choices[1]['id']})
    assert r.status_code == 200
    assert r.json()['choice_id'] == choices[1]['id']

    r = client.patch(f'/api/tests/{test_id}', headers=headers, json={'title': 'World Geography'})
    assert r.json()['title'] == 'World Geography'
    listing = client.get('/api/tests', headers=headers, params={'search': 'world'}).json()
    assert listing['total'] == 1

    assert client.delete(f'/api/questions/{question_id}', headers=headers).status_code == 200
    assert client.get(f'/api/tests/{test_id}/questions', headers=headers).json() == []
    assert client.delete(f'/api/tests/{test_id}', headers=headers).status_code == 200
    assert client.get(f'/api/tests/{test_id}', headers=headers).status_code == 404


def test_other_users_cannot_touch_a_test():
    owner = _signup(TestClient(app))
    intruder = _signup(TestClient(app))
    client = TestClient(app)
    test_id = client.post('/api/tests', json={'title': 'Private'}, headers=owner).json()['id']
    q = client.post(f'/api/tests/{test_id}/questions', headers=owner, json={'text': 'Q', 'answer_choices': [{'text': 'A'}]})
    question_id = q.json()['id']

    assert client.get(f'/api/tests/{test_id}', headers=intruder).status_code == 403
    assert client.delete(f'/api/tests/{test_id}', headers=intruder).status_code == 403
    r = client.put(f'/api/questions/{question_id}', headers=intruder, json={'text': 'Mine', 'answer_choices': []})
    assert r.status_code == 403
    assert client.get(f'/api/tests/{test_id}/questions', headers=owner).json()[0]['text'] == 'Q'


def test_invalid_payloads_are_rejected():
    client = TestClient(app)
    headers = _signup(client)
    assert client.post('/api/tests', json={'title': '   '}, headers=headers).status_code == 400
    test_id = client.post('/api/tests', json={'title': 'T'}, headers=headers).json()['id']
    r = client.post(f'/api/tests/{test_id}/questions', headers=headers, json={'text': 'Q', 'answer_choices': [{'text': ' '}]})
    assert r.status_code == 400


def test_page_guard_for_anonymous_visitor():
    client = TestClient(app)
    assert client.get('/', follow_redirects=False).status_code == 200
    assert client.get('/login', follow_redirects=False).status_code == 200
    r = client.get('/dashboard', follow_redirects=False)
    assert r.status_code == 303
    assert r.headers['location'] == '/login'
    r = client.get('/no/such/page', follow_redirects=False)
    assert r.headers['location'] == '/not-found'


def test_revoked_cookie_ends_on_login_page():
    client = TestClient(app)
    headers = _signup(client)
    token_cookie = client.cookies.get('access_token')
    # logging out with the bearer header alone leaves other copies of the cookie around
    assert client.post('/api/auth/logout', headers=headers).status_code == 200
    stale = TestClient(app, cookies={'access_token': token_cookie})
    r = stale.get('/dashboard')
    assert r.status_code == 200
    assert r.url.path == '/login'
    assert [h.headers['location'] for h in r.history] == ['/login']
    assert 'Max-Age=0' in r.history[0].headers['set-cookie']


def test_login_page_clears_cookie_after_admin_change():
    client = TestClient(app)
    headers = _signup(client)
    email = client.get('/api/auth/me', headers=headers).json()['email']
    with Session(engine) as session:
        user = session.exec(select(models.User).where(models.User.email == email)).one()
        user.is_admin = True
        user.token_version += 1
        session.add(user)
        session.commit()
    r = client.get('/login', follow_redirects=False)
    assert r.status_code == 200
    assert 'access_token=' in r.headers['set-cookie']
    assert 'Max-Age=0' in r.headers['set-cookie']


def test_page_guard_for_logged_in_user():
    client = TestClient(app)
    _signup(client)
    r = client.get('/login', follow_redirects=False)
    assert r.status_code == 303
    assert r.headers['location'] == '/dashboard'
    assert client.get('/dashboard', follow_redirects=False).status_code == 200
    assert client.get('/dashboard/test/1/questions', follow_redirects=False).status_code == 200
    r = client.get('/admin', follow_redirects=False)
    assert r.headers['location'] == '/forbidden'
    assert client.get('/forbidden', follow_redirects=False).status_code == 403


def test_admin_reaches_admin_page():
    client = TestClient(app)
    _signup(client, is_admin=True)
    assert client.get('/admin', follow_redirects=False).status_code == 200


def test_logout_revokes_session_for_pages_and_api():
    client = TestClient(app)
    headers = _signup(client)
    token_cookie = client.cookies.get('access_token')
    assert client.post('/api/auth/logout', headers=headers).status_code == 200
    assert client.get('/api/auth/me', headers=headers).status_code == 401
    # a stolen copy of the old cookie no longer opens protected pages
    stale = TestClient(app, cookies={'access_token': token_cookie})
    r = stale.get('/dashboard', follow_redirects=False)
    assert r.headers['location'] == '/login'


def test_password_reset_request_does_not_leak_accounts():
    client = TestClient(app)
    r = client.post('/api/auth/reset-password', json={'email': 'ghost@example.com'})
    assert r.status_code == 202
    r = client.post('/api/auth/reset-password/confirm', json={'token': 'bogus', 'password': 'whatever1'})
    assert r.status_code == 401


def test_request_id_header_exists():
    client = TestClient(app)
    r = client.get('/health')
    assert r.status_code == 200
    assert 'X-Request-ID' in r.headers
    r = client.get('/dashboard', follow_redirects=False)
    assert 'X-Request-ID' in r.headers
