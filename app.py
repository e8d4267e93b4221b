import logging
import os

from flask import Flask, g, jsonify, request, send_from_directory, session
from flask_wtf.csrf import CSRFError
from werkzeug.exceptions import HTTPException

from config import Config
from database import db
from extensions import csrf, mail, migrate, socketio


# Initialize Flask app
app = Flask(__name__)
app.config.from_object(Config)

logging.basicConfig(
    level=getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

db.init_app(app)
mail.init_app(app)
csrf.init_app(app)
socketio.init_app(app, async_mode=app.config.get("SOCKETIO_ASYNC_MODE"))

# Create flask command lines to update the db based on the model
# Useage:
# Create a migration script in ./migrations/versions
# > flask db migrate -m "Update comments"
# Run the update
# > flask db upgrade
migrate.init_app(app, db)

# Models import should be after initializing db
from models.organization import Organization, Team  # noqa: E402,F401
from models.user import User  # noqa: E402
from models.project import Project, ProjectType  # noqa: E402,F401
from models.task import Task, TaskStep  # noqa: E402,F401
from models.task_loop import LoopStep, TaskLoop  # noqa: E402,F401
from models.loop_history import LoopHistory  # noqa: E402,F401
from models.loop_template import LoopTemplate  # noqa: E402,F401
from models.comment import Comment  # noqa: E402,F401
from models.notification import Notification  # noqa: E402,F401
from models.invitation import Invitation  # noqa: E402,F401
from models.otp_token import OtpToken, RateLimit  # noqa: E402,F401
from models.push_subscription import PushSubscription  # noqa: E402,F401
from models.saved_search import SavedSearch  # noqa: E402,F401
from models.objective import Objective  # noqa: E402,F401

from routes import json_error, login_required  # noqa: E402
from routes.auth import auth_bp  # noqa: E402
from routes.comments import comments_bp  # noqa: E402
from routes.invitations import invitations_bp  # noqa: E402
from routes.loops import loops_bp  # noqa: E402
from routes.notifications import notifications_bp  # noqa: E402
from routes.objectives import objectives_bp  # noqa: E402
from routes.organizations import organizations_bp  # noqa: E402
from routes.projects import projects_bp  # noqa: E402
from routes.push import push_bp  # noqa: E402
from routes.search import search_bp  # noqa: E402
from routes.tasks import tasks_bp  # noqa: E402
from routes.users import users_bp  # noqa: E402
from commands import register_commands  # noqa: E402
import sockets  # noqa: E402,F401  registers the Socket.IO handlers

for blueprint in (
    auth_bp,
    organizations_bp,
    users_bp,
    invitations_bp,
    projects_bp,
    tasks_bp,
    loops_bp,
    comments_bp,
    notifications_bp,
    push_bp,
    search_bp,
    objectives_bp,
):
    app.register_blueprint(blueprint)

register_commands(app)


# User Authentication
# ------------------------------
@app.before_request
def load_user():
    """Set ``g.user`` from the session.

    Deactivated or deleted users are treated as signed out.
    """
    g.user = None
    user_id = session.get("user_id")
    if user_id:
        user = User.query.get(user_id)
        if user is not None and user.is_active:
            g.user = user


# Error handling
# ------------------------------
def _wants_json() -> bool:
    return request.path.startswith("/api/")


@app.errorhandler(CSRFError)
def handle_csrf_error(error):
    return json_error(error.description or "The CSRF token is missing or invalid.", status=400)


@app.errorhandler(HTTPException)
def handle_http_error(error):
    if not _wants_json():
        return error
    return json_error(error.description or error.name, status=error.code or 500)


@app.errorhandler(Exception)
def handle_unexpected_error(error):
    if isinstance(error, HTTPException):
        return handle_http_error(error)
    app.logger.exception("Unhandled error on %s", request.path)
    db.session.rollback()
    return json_error("An unexpected error occurred.", status=500)


# Uploaded files
# ------------------------------
@app.route("/uploads/<path:filename>")
@login_required
def uploaded_file(filename):
    return send_from_directory(app.config["UPLOAD_FOLDER"], filename)


@app.route("/api/health")
def health():
    return jsonify({"status": "ok", "app": app.config.get("APP_NAME")})


# Application Execution
# ------------------------------
if __name__ == "__main__":
    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)
    socketio.run(app, debug=True)
    # socketio.run(app, host='0.0.0.0', port=5000)
