from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))

    origins = list(allowed_origins)
    extra_origins = flask_app.config.get('CORS_ORIGINS') or ''
    origins.extend(o.strip() for o in extra_origins.split(',') if o.strip())

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=origins)

    socketio.init_app(flask_app, cors_allowed_origins=origins)

    from crease.main import main
    flask_app.register_blueprint(main)

    from crease.api.matches import matches
    flask_app.register_blueprint(matches, url_prefix='/api')

    # Binds the room registry to this app and registers the /ws handlers
    from crease.socketio_events import register_socketio_handlers
    register_socketio_handlers(flask_app)

    with flask_app.app_context():
        import crease.models  # noqa: F401
        db.create_all()

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates the match history tables."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Match history has been reset!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
