from fastapi import Depends, Request
from fastapi.testclient import TestClient

from tasktracker_app import deps
from tasktracker_app.main import create_app
from tasktracker_app.services import Identity

from conftest import make_settings


def _probe_app():
    app = create_app(make_settings())

    @app.get("/probe/roles")
    def roles(identity: Identity = Depends(deps.require_roles("admin"))):
        return {"id": identity.id}

    @app.get("/probe/state")
    def state(request: Request, _: Identity = Depends(deps.get_current_identity)):
        return {"email": request.state.identity.email}

    return app


def test_extract_bearer_token():
    assert deps.extract_bearer_token(None) is None
    assert deps.extract_bearer_token("") is None
    assert deps.extract_bearer_token("Bearer") is None
    assert deps.extract_bearer_token("Basic abc") is None
    assert deps.extract_bearer_token("bearer   abc.def.ghi ") == "abc.def.ghi"


def test_require_roles_needs_authentication_then_passes(register):
    user, token = register()
    with TestClient(_probe_app()) as c:
        assert c.get("/probe/roles").status_code == 401
        r = c.get("/probe/roles", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200, r.text
    assert r.json() == {"id": user["id"]}


def test_identity_is_attached_to_request_state(register):
    user, token = register()
    with TestClient(_probe_app()) as c:
        r = c.get("/probe/state", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200, r.text
    assert r.json() == {"email": user["email"]}
