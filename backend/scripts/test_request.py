"""Run a quick request against the app.

Tries to use FastAPI's TestClient if available; otherwise calls the
`health()` controller directly as a fallback (no httpx required).
"""

import sys
import os

# Ensure backend folder is on sys.path so `testcraft` package can be imported
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

try:
    from fastapi.testclient import TestClient
    from testcraft.main import app
    def run_testclient():
        client = TestClient(app)
        for path in ('/health', '/dashboard'):
            resp = client.get(path, follow_redirects=False)
            print(path, 'STATUS:', resp.status_code, resp.headers.get('location', ''))
    run_testclient()
except ImportError:
    from testcraft.main import health
    print('Direct call to health():', health())
