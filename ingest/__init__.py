from celery import Celery, Task
from flask import Flask, has_app_context
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_cors import CORS
from config import config

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()


class ContextTask(Task):
    """Run every task inside the Flask application context"""
    def __call__(self, *args, **kwargs):
        if has_app_context():
            return self.run(*args, **kwargs)
        with celery_app.flask_app.app_context():
            return self.run(*args, **kwargs)


celery_app = Celery(__name__, task_cls=ContextTask, include=['ingest.tasks.tasks'])
celery_app.flask_app = None


def init_celery(app):
    """Bind the Celery application to the Flask app configuration"""
    celery_app.conf.update(
        broker_url=app.config['CELERY_BROKER_URL'],
        result_backend=app.config['CELERY_RESULT_BACKEND'],
        task_always_eager=app.config['CELERY_TASK_ALWAYS_EAGER'],
        task_track_started=True,
    )
    celery_app.flask_app = app
    return celery_app


def create_app(config_name='default'):
    """Application factory function"""
    app = Flask(__name__)

    # Load configuration
    app.config.from_object(config[config_name])

    # Add scheduler configuration
    app.config.update({
        'SCHEDULER_API_ENABLED': False,
        'SCHEDULER_TIMEZONE': 'UTC',
        })

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    init_celery(app)
    CORS(app)

    # Register blueprints
    from ingest.routes.upload import upload_bp
    app.register_blueprint(upload_bp, url_prefix='/api/upload')

    if app.config['ORPHAN_SWEEP_ENABLED']:
        with app.app_context():
            from ingest.services import init_scheduler
            init_scheduler(app)
    return app
