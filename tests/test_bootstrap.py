"""Tests for the bootstrap super admin settings.

Covers:
- the shipped default address passes request validation, so the seeded
  account can log in without any configuration
- SUPERADMIN_EMAIL values that /auth/login would reject fail at startup
"""

import pytest
from pydantic import ValidationError

from core.config import Settings

SECRET = "bootstrap-secret-0123456789abcdef0123"


def test_default_super_admin_can_log_in(client_factory):
    email = Settings.model_fields["superadmin_email"].default
    password = Settings.model_fields["superadmin_password"].default
    with client_factory(superadmin_email=email, superadmin_password=password) as harness:
        resp = harness.client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        assert resp.json()["user"]["role"]["slug"] == "super_admin"


@pytest.mark.parametrize("email", ["superadmin@gatehouse.local", "root@gatehouse.test", "not-an-email"])
def test_undeliverable_super_admin_email_fails_at_startup(email):
    with pytest.raises(ValidationError):
        Settings(debug=True, secret_key=SECRET, superadmin_email=email)
