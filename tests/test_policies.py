import unittest

from flask import Flask, session

from zen_platform.errors import PermissionError as AppPermissionError
from zen_platform.policies import (
    ORDERING_READ,
    ORDERING_WRITE,
    current_role,
    normalize_role,
    permissions_for,
    require_permission,
)


class PoliciesTest(unittest.TestCase):
    def setUp(self) -> None:
        self.app = Flask(__name__)
        self.app.secret_key = "test"

    def test_normalize_role(self) -> None:
        self.assertEqual(normalize_role(" Admin "), "admin")
        self.assertEqual(normalize_role("buyer"), "viewer")
        self.assertEqual(normalize_role("buyer", default=""), "")

    def test_viewer_reads_but_does_not_write(self) -> None:
        self.assertIn(ORDERING_READ, permissions_for("viewer"))
        self.assertNotIn(ORDERING_WRITE, permissions_for("viewer"))
        self.assertEqual(permissions_for("unknown"), frozenset())

    def test_require_permission_with_explicit_role(self) -> None:
        self.assertEqual(require_permission(ORDERING_WRITE, role="manager"), "manager")
        with self.assertRaises(AppPermissionError) as ctx:
            require_permission(ORDERING_WRITE, role="viewer")
        self.assertEqual(ctx.exception.http_status, 403)
        self.assertEqual(ctx.exception.payload.get("required_permission"), ORDERING_WRITE)

    def test_anonymous_session_is_read_only(self) -> None:
        with self.app.test_request_context("/"):
            self.assertEqual(current_role(), "viewer")
            self.assertEqual(require_permission(ORDERING_READ), "viewer")
            with self.assertRaises(AppPermissionError):
                require_permission(ORDERING_WRITE)

    def test_session_role_is_used(self) -> None:
        with self.app.test_request_context("/"):
            session["user_role"] = "agent"
            self.assertEqual(current_role(), "agent")
            self.assertEqual(require_permission(ORDERING_WRITE), "agent")


if __name__ == "__main__":
    unittest.main()
