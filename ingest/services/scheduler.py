from datetime import datetime, timedelta

from flask_apscheduler import APScheduler

# Create global scheduler instance
scheduler = APScheduler()

INTERRUPTED_MESSAGE = 'Processing was interrupted before it finished. Please upload the video again.'

def init_scheduler(app):
    """Initialize the scheduler with Flask app"""
    scheduler.init_app(app)
    if not scheduler.running:
        scheduler.start()

    scheduler.add_job(
        id='fail_orphaned_uploads',
        func=lambda: fail_orphaned_uploads_with_context(app),
        trigger='interval',
        minutes=app.config['ORPHAN_SWEEP_MINUTES'],
        replace_existing=True
    )

    print("Flask-APScheduler started successfully")

def fail_orphaned_uploads_with_context(app):
    """Sweep orphaned pipelines with proper app context"""
    with app.app_context():
        fail_orphaned_uploads(app)

def fail_orphaned_uploads(app, now=None):
    """Fail sessions whose pipeline stopped reporting, e.g. after a worker restart"""
    from ingest import db
    from ingest.errors import InvalidTransitionError
    from ingest.models import UploadSession, PIPELINE_STATUSES
    from ingest.services.upload_session_service import UploadSessionService

    cutoff = (now or datetime.utcnow()) - timedelta(minutes=app.config['ORPHAN_TIMEOUT_MINUTES'])
    try:
        orphaned = UploadSession.query.filter(
            UploadSession.status.in_(PIPELINE_STATUSES),
            UploadSession.updated_at < cutoff
        ).all()
        upload_ids = [session.upload_id for session in orphaned]
    except Exception as e:
        print(f"[Sweep] Error looking up orphaned uploads: {e}")
        db.session.rollback()
        return []

    sessions = UploadSessionService()
    failed = []
    for upload_id in upload_ids:
        try:
            sessions.fail(upload_id, INTERRUPTED_MESSAGE)
            failed.append(upload_id)
        except InvalidTransitionError:
            # Pipeline reached a terminal state between the query and the update
            db.session.rollback()

    if failed:
        print(f"[Sweep] Failed {len(failed)} orphaned uploads: {', '.join(failed)}")
    return failed
