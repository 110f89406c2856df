import os
import sys
import pytest

# Ensure the backend root (containing the `crease` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from crease import create_app, db, socketio
from crease.socketio_events import NAMESPACE


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = 'DEBUG'
    CORS_ORIGINS = ''
    TOTAL_OVERS = 1
    MAX_WICKETS = 10
    EXTRA_PROBABILITY = 0.05
    PREGAME_GRACE_SEC = 0.2
    MATCH_GRACE_SEC = 0.3
    # Synthesis off: tests drive both sides of every delivery
    DELIVERY_WAIT_SEC = 0


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        import crease.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def lobby(flask_app):
    return flask_app.extensions['crease']


@pytest.fixture()
def make_client(flask_app):
    """Factory for Socket.IO test clients on /ws; all are disconnected on teardown."""
    clients = []

    def _make():
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace=NAMESPACE,
        )
        test_client.get_received(NAMESPACE)  # drop the connect greeting
        clients.append(test_client)
        return test_client

    yield _make
    for test_client in clients:
        try:
            if test_client.is_connected(NAMESPACE):
                test_client.disconnect(namespace=NAMESPACE)
        except RuntimeError:
            pass
