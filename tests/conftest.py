import pytest
from flask_jwt_extended import create_access_token

from telebill import create_app
from telebill.extensions import db as _db

from billing_test_utils import BillingTestUtils


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def session(app):
    return _db.session


@pytest.fixture
def admin_user(app):
    return BillingTestUtils.create_test_admin()


@pytest.fixture
def admin_headers(admin_user):
    token = create_access_token(identity=str(admin_user.id))
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def auth_headers(app):
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(identity=str(user.id))}"}
    return _headers
