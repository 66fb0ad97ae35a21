from __future__ import annotations

# =========================================
# app.py
# Optical Portal - application factory, staff login, user management
# =========================================

import os

from dotenv import load_dotenv
from flask import Flask, jsonify, request, abort
from flask_login import (
    LoginManager,
    login_user,
    login_required,
    logout_user,
    current_user,
)

from .models import db, User, init_database

load_dotenv()

login_manager = LoginManager()


def _sqlite_file(uri: str) -> str | None:
    """Filesystem path of a sqlite:/// URI, None for in-memory or other engines."""
    prefix = "sqlite:///"
    if not uri.startswith(prefix):
        return None
    path = uri[len(prefix):]
    if not path or path == ":memory:":
        return None
    return os.path.abspath(path)


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    os.makedirs(app.instance_path, exist_ok=True)

    app.config.update(
        SECRET_KEY=os.getenv("SECRET_KEY", "dev-secret-change-me"),
        SQLALCHEMY_DATABASE_URI=os.getenv(
            "SQLALCHEMY_DATABASE_URI", "sqlite:///" + os.path.join(app.instance_path, "optical_orders.db")
        ),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        BACKUP_DIR=os.getenv("BACKUP_DIR", os.path.join(app.instance_path, "backups")),
        PDF_DIR=os.getenv("PDF_DIR", os.path.join(app.instance_path, "pdfs")),
        COMPANY_NAME=os.getenv("COMPANY_NAME", "Optical Shop"),
        SALES_TAX_RATE=os.getenv("SALES_TAX_RATE", "0.0225"),
        WARRANTY_COPAY_RATE=os.getenv("WARRANTY_COPAY_RATE", "0.15"),
        ADMIN_USER=os.getenv("ADMIN_USER", "admin"),
        ADMIN_PASS=os.getenv("ADMIN_PASS", "admin123"),
    )
    if overrides:
        app.config.update(overrides)
    app.config.setdefault("DATABASE_PATH", _sqlite_file(app.config["SQLALCHEMY_DATABASE_URI"]))

    db.init_app(app)
    login_manager.init_app(app)

    from .orders_api import orders_api
    app.register_blueprint(orders_api)

    _register_routes(app)

    with app.app_context():
        init_database()

    return app


# -------------------- Auth --------------------
@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"ok": False, "error": "Login required"}), 401


def admin_required():
    if not getattr(current_user, "is_admin", lambda: False)():
        abort(403)


def seed_admin(username: str, password: str) -> bool:
    """Create the admin account if it is missing. Returns True when created."""
    if User.query.filter_by(username=username).first():
        return False
    u = User(username=username, role="admin")
    u.set_password(password)
    db.session.add(u)
    db.session.commit()
    return True


def _user_dict(u: User) -> dict:
    return {"id": u.id, "username": u.username, "role": u.role}


# -------------------- Routes --------------------
def _register_routes(app: Flask):

    @app.errorhandler(403)
    def forbidden(_e):
        return jsonify({"ok": False, "error": "Admin access required"}), 403

    @app.errorhandler(404)
    def not_found(_e):
        return jsonify({"ok": False, "error": "Not found"}), 404

    @app.post("/login")
    def login():
        username = request.form.get("username", "").strip()
        password = request.form.get("password", "").strip()

        user = User.query.filter_by(username=username).first()
        if user and user.check_password(password):
            login_user(user)
            return jsonify({"ok": True, "user": _user_dict(user)})

        app.logger.warning("Failed login for %r", username)
        return jsonify({"ok": False, "error": "Invalid login."}), 401

    @app.route("/logout")
    @login_required
    def logout():
        logout_user()
        return jsonify({"ok": True})

    # -------------------- Admin: User Management --------------------
    @app.get("/users")
    @login_required
    def users():
        admin_required()
        rows = User.query.order_by(User.role.desc(), User.username.asc()).all()
        return jsonify({"ok": True, "users": [_user_dict(u) for u in rows]})

    @app.post("/users/new")
    @login_required
    def user_new():
        admin_required()

        username = request.form.get("username", "").strip()
        password = request.form.get("password", "").strip()
        role = request.form.get("role", "staff").strip()

        if not username or not password:
            return jsonify({"ok": False, "error": "Username and password required."}), 400

        if role not in ["admin", "staff"]:
            role = "staff"

        if User.query.filter_by(username=username).first():
            return jsonify({"ok": False, "error": "That username already exists."}), 409

        u = User(username=username, role=role)
        u.set_password(password)
        db.session.add(u)
        db.session.commit()
        return jsonify({"ok": True, "user": _user_dict(u)}), 201

    @app.post("/users/<int:user_id>/reset-password")
    @login_required
    def user_reset_password(user_id):
        admin_required()

        user = db.get_or_404(User, user_id)
        new_pass = request.form.get("password", "").strip()
        if not new_pass:
            return jsonify({"ok": False, "error": "Password cannot be empty."}), 400

        user.set_password(new_pass)
        db.session.commit()
        return jsonify({"ok": True, "message": f"Password updated for {user.username}."})

    @app.post("/users/<int:user_id>/delete")
    @login_required
    def user_delete(user_id):
        admin_required()

        user = db.get_or_404(User, user_id)

        # Block deleting yourself (prevents locking yourself out)
        if user.id == current_user.id:
            return jsonify({"ok": False, "error": "You can't delete your own account while logged in."}), 409

        if user.role == "admin":
            admin_count = User.query.filter_by(role="admin").count()
            if admin_count <= 1:
                return jsonify({"ok": False, "error": "You can't delete the last admin account."}), 409

        db.session.delete(user)
        db.session.commit()
        return jsonify({"ok": True, "message": f"Deleted user: {user.username}"})

    # -------------------- One-time init --------------------
    @app.route("/init-db")
    def init_db():
        init_database()

        admin_user = app.config["ADMIN_USER"]
        if seed_admin(admin_user, app.config["ADMIN_PASS"]):
            return f"DB initialized. Admin user created: {admin_user}"
        return "DB initialized. Admin user already exists."
