from .base_route import base_bp
from .auth import auth_bp
from .permissions import permissions_bp
from .organizations import organizations_bp
from .users import users_bp
from .batches import batches_bp
from .phase_requests import phase_requests_bp
from .attendance import attendance_bp
from .evaluations import evaluations_bp
from .quizzes import quizzes_bp
from .audio import audio_bp
from .dashboard import dashboard_bp


def register_routes(app):
    app.register_blueprint(base_bp)
    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(permissions_bp, url_prefix='/api')
    app.register_blueprint(organizations_bp, url_prefix='/api')
    app.register_blueprint(users_bp, url_prefix='/api')
    app.register_blueprint(batches_bp, url_prefix='/api')
    app.register_blueprint(phase_requests_bp, url_prefix='/api')
    app.register_blueprint(attendance_bp, url_prefix='/api')
    app.register_blueprint(evaluations_bp, url_prefix='/api')
    app.register_blueprint(quizzes_bp, url_prefix='/api')
    app.register_blueprint(audio_bp, url_prefix='/api')
    app.register_blueprint(dashboard_bp, url_prefix='/api')
