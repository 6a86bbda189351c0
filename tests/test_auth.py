import pytest
from flask import Flask, jsonify, g

from orders.domain.errors import UnauthorizedError
from orders.infrastructure.web.auth import (
    AuthConfigurationError, decode_actor, optional_auth, require_admin, require_auth,
)
from conftest import TEST_JWT_SECRET, auth_header, make_token


@pytest.fixture
def app():
    app = Flask(__name__)
    app.config.update(TESTING=True, JWT_SECRET=TEST_JWT_SECRET, JWT_ALGORITHM="HS256")

    @app.route('/private')
    @require_auth
    def private():
        return jsonify({"user": g.actor.user_id, "role": g.actor.role})

    @app.route('/admin')
    @require_admin
    def admin():
        return jsonify({"user": g.actor.user_id})

    @app.route('/open')
    @optional_auth
    def open_route():
        return jsonify({"user": g.actor.user_id if g.actor else None})

    return app


@pytest.fixture
def client(app):
    return app.test_client()


class TestDecorators:

    def test_missing_token(self, client):
        response = client.get('/private')
        assert response.status_code == 401
        assert response.get_json()["kind"] == "unauthorized"

    def test_bearer_token(self, client):
        response = client.get('/private', headers=auth_header(user_id="u9"))
        assert response.status_code == 200
        assert response.get_json() == {"user": "u9", "role": "user"}

    def test_x_auth_token_header(self, client):
        response = client.get('/private', headers={"x-auth-token": make_token(user_id="u7")})
        assert response.get_json()["user"] == "u7"

    def test_wrong_signature(self, client):
        token = make_token(secret="otro-secreto")
        response = client.get('/private', headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.get_json()["message"] == "Invalid authentication token"

    def test_admin_route_rejects_customers(self, client):
        assert client.get('/admin', headers=auth_header(role="user")).status_code == 403
        assert client.get('/admin', headers=auth_header(role="admin")).status_code == 200

    def test_optional_auth_allows_guests(self, client):
        assert client.get('/open').get_json() == {"user": None}
        assert client.get('/open', headers=auth_header(user_id="u1")).get_json() == {"user": "u1"}

    def test_missing_secret_is_a_server_error(self, app, client):
        app.config["JWT_SECRET"] = ""
        response = client.get('/private', headers=auth_header())
        assert response.status_code == 500
        assert response.get_json()["message"] == "Server configuration error"


class TestDecodeActor:

    def test_token_without_user_id(self, app):
        import jwt
        token = jwt.encode({"role": "admin"}, TEST_JWT_SECRET, algorithm="HS256")
        with app.app_context():
            with pytest.raises(UnauthorizedError, match="Invalid token structure"):
                decode_actor(token)

    def test_sub_claim_is_accepted(self, app):
        import jwt
        token = jwt.encode({"sub": "u5", "role": "admin"}, TEST_JWT_SECRET, algorithm="HS256")
        with app.app_context():
            actor = decode_actor(token)
        assert actor.user_id == "u5"
        assert actor.is_admin

    def test_missing_secret(self, app):
        app.config["JWT_SECRET"] = None
        with app.app_context():
            with pytest.raises(AuthConfigurationError):
                decode_actor(make_token())
