from flask import Flask
from models import db, User, Course, Enrollment, ApprovalAudit, Notification, SignatureCropSession
from flask_login import LoginManager
from flask_mail import Mail
from routes import main_bp
from admin_routes import admin_bp
from signature_routes import signature_bp
from seed_courses import seed_default_courses
from utils import json_error
import os
import logging

logging.basicConfig(level=os.environ.get('LOG_LEVEL', 'INFO'), format='%(asctime)s %(levelname)s %(message)s')

app = Flask(__name__)
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-me')

# Database configuration
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///deepmetrics.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['SQLALCHEMY_ENGINE_OPTIONS'] = {'pool_pre_ping': True}

logging.info(f"Using database: {app.config['SQLALCHEMY_DATABASE_URI']}")

# Simulated authentication: the single admin account comes from the environment
app.config['ADMIN_EMAIL'] = os.environ.get('ADMIN_EMAIL', 'admin@deepmetrics.example').lower()
app.config['ADMIN_PASSWORD'] = os.environ.get('ADMIN_PASSWORD', 'admin-password')

# Uploads: signatures are capped at 2MB, leave headroom for the multipart envelope
app.config['MAX_CONTENT_LENGTH'] = int(os.environ.get('MAX_CONTENT_LENGTH', 4 * 1024 * 1024))
app.config['CERTIFICATE_TEMPLATE_PATH'] = os.environ.get('CERTIFICATE_TEMPLATE_PATH')

# Mail configuration; delivery is off unless MAIL_ENABLED is set, emails are only logged
app.config['MAIL_ENABLED'] = os.environ.get('MAIL_ENABLED', '0').lower() in ('1', 'true', 'yes', 'on')
app.config['MAIL_SERVER'] = os.environ.get('MAIL_SERVER', 'localhost')
app.config['MAIL_PORT'] = int(os.environ.get('MAIL_PORT', 1025))
app.config['MAIL_USE_TLS'] = False
app.config['MAIL_USE_SSL'] = False
app.config['MAIL_DEFAULT_SENDER'] = os.environ.get('MAIL_DEFAULT_SENDER', 'noreply@deepmetrics.example')
app.config['MAIL_SUPPRESS_SEND'] = not app.config['MAIL_ENABLED']

# Initialize extensions
db.init_app(app)
mail = Mail(app)
login_manager = LoginManager()
login_manager.init_app(app)

# Create database tables and the default catalog if they don't exist
with app.app_context():
    db.create_all()
    try:
        seed_default_courses()
    except Exception:
        db.session.rollback()
        logging.exception('[STARTUP] Failed seeding default courses')


@login_manager.user_loader
def load_user(user_id):
    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None


@login_manager.unauthorized_handler
def unauthorized():
    return json_error('Please log in to access this resource.', 401)


@app.errorhandler(413)
def too_large(_e):
    return json_error('Upload too large. Max 2MB.', 413)


app.register_blueprint(main_bp)
app.register_blueprint(admin_bp)
app.register_blueprint(signature_bp)

if __name__ == '__main__':
    app.run(host='127.0.0.1', port=5050, debug=True)
