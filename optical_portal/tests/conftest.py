import pytest

from optical_portal import create_app
from optical_portal.app import seed_admin
from optical_portal.models import db, User


def _make_app(tmp_path, uri):
    return create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": uri,
        "BACKUP_DIR": str(tmp_path / "backups"),
        "PDF_DIR": str(tmp_path / "pdfs"),
        "ADMIN_USER": "admin",
        "ADMIN_PASS": "admin-pass",
    })


@pytest.fixture
def app(tmp_path):
    """Return an app bound to an in-memory database."""
    app = _make_app(tmp_path, "sqlite://")
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def file_app(tmp_path):
    """Return an app bound to a SQLite file, needed for backups."""
    app = _make_app(tmp_path, f"sqlite:///{tmp_path / 'orders.db'}")
    yield app
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def app_ctx(app):
    """Run the test inside an application context."""
    with app.app_context():
        yield app


def _seed_users(app):
    with app.app_context():
        seed_admin("admin", "admin-pass")
        if not User.query.filter_by(username="staff").first():
            staff = User(username="staff", role="staff")
            staff.set_password("staff-pass")
            db.session.add(staff)
            db.session.commit()


def login(client, username, password):
    return client.post("/login", data={"username": username, "password": password})


@pytest.fixture
def client(app):
    """Return an unauthenticated test client."""
    return app.test_client()


@pytest.fixture
def admin_client(app):
    """Return a client logged in as the admin user."""
    _seed_users(app)
    client = app.test_client()
    login(client, "admin", "admin-pass")
    return client


@pytest.fixture
def staff_client(app):
    """Return a client logged in as a staff user."""
    _seed_users(app)
    client = app.test_client()
    login(client, "staff", "staff-pass")
    return client


@pytest.fixture
def file_admin_client(file_app):
    """Return an admin client for the file-backed app."""
    _seed_users(file_app)
    client = file_app.test_client()
    login(client, "admin", "admin-pass")
    return client


@pytest.fixture
def order_payload():
    """Order input matching the worked example: $200 frame, $150/$100 lens."""
    return {
        "patient_name": "Jane Doe",
        "order_date": "2026-03-14",
        "account_number": "A-1001",
        "frame_sku": "RB-2140",
        "frame_name": "Wayfarer",
        "frame_formula": "50-22-150",
        "frame_price": 200,
        "frame_allowance": 50,
        "frame_discount_percent": 10,
        "material_copay": 20,
        "warranty_type": "Basic Warranty",
        "warranty_price": 35,
        "payment_today": 100,
        "od_sphere": "-1.25",
        "os_sphere": "-1.00",
        "lens_selections": {
            "lens_design": {
                "value": "Progressive- Light DX",
                "price": 150,
                "insurance_price": 100,
                "label": "Lens Design",
            },
        },
    }
