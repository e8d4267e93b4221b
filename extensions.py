"""Flask extensions shared between the app factory code and the services."""

from flask_mail import Mail
from flask_migrate import Migrate
from flask_socketio import SocketIO
from flask_wtf.csrf import CSRFProtect

# async_mode is chosen from the configuration when the app binds the extension
socketio = SocketIO(cors_allowed_origins="*")
mail = Mail()
csrf = CSRFProtect()
migrate = Migrate()
