from optical_portal.models import User


class TestLogin:
    """Staff login."""

    def test_bad_password(self, client, admin_client):
        """Wrong credentials are a 401."""
        response = client.post("/login", data={"username": "admin", "password": "nope"})
        assert response.status_code == 401
        assert response.get_json()["ok"] is False

    def test_login_and_logout(self, client, admin_client):
        """A session opens on login and closes on logout."""
        response = client.post("/login", data={"username": "staff", "password": "staff-pass"})
        assert response.get_json()["user"]["role"] == "staff"
        assert client.get("/api/doctors").status_code == 200

        client.get("/logout")
        assert client.get("/api/doctors").status_code == 401


class TestInitDb:
    """GET /init-db"""

    def test_seeds_admin_once(self, app, client):
        """The configured admin is created on the first call only."""
        assert "Admin user created: admin" in client.get("/init-db").get_data(as_text=True)
        assert "already exists" in client.get("/init-db").get_data(as_text=True)

        with app.app_context():
            assert User.query.filter_by(username="admin").first().is_admin()


class TestUserManagement:
    """Admin-only user routes."""

    def test_staff_forbidden(self, staff_client):
        """Staff cannot list users."""
        assert staff_client.get("/users").status_code == 403

    def test_list_users(self, admin_client):
        """Admins see every account."""
        users = admin_client.get("/users").get_json()["users"]
        assert {u["username"]: u["role"] for u in users} == {"admin": "admin", "staff": "staff"}

    def test_create_user(self, admin_client):
        """New accounts default to staff for unknown roles."""
        response = admin_client.post("/users/new", data={"username": "optician", "password": "pw", "role": "owner"})
        assert response.status_code == 201
        assert response.get_json()["user"]["role"] == "staff"

    def test_duplicate_username(self, admin_client):
        """Usernames are unique."""
        response = admin_client.post("/users/new", data={"username": "staff", "password": "pw"})
        assert response.status_code == 409

    def test_reset_password(self, app, admin_client):
        """Admins can reset another user's password."""
        with app.app_context():
            staff_id = User.query.filter_by(username="staff").first().id
        response = admin_client.post(f"/users/{staff_id}/reset-password", data={"password": "new-pass"})

        assert response.status_code == 200
        with app.app_context():
            assert User.query.filter_by(username="staff").first().check_password("new-pass")

    def test_cannot_delete_self(self, app, admin_client):
        """The logged-in admin cannot delete their own account."""
        with app.app_context():
            admin_id = User.query.filter_by(username="admin").first().id
        assert admin_client.post(f"/users/{admin_id}/delete").status_code == 409

    def test_delete_staff(self, app, admin_client):
        """Other accounts can be deleted."""
        with app.app_context():
            staff_id = User.query.filter_by(username="staff").first().id
        assert admin_client.post(f"/users/{staff_id}/delete").status_code == 200

    def test_missing_user(self, admin_client):
        """Unknown user ids are 404."""
        assert admin_client.post("/users/999/reset-password", data={"password": "x"}).status_code == 404
