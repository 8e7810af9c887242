"""
Tests for the exception hierarchy and the global error envelope
"""

from fastapi import status

from hookcms.exceptions import (
    AuthenticationError,
    AuthorizationError,
    CMSError,
    ConfigurationError,
    DuplicateResourceError,
    ErrorCode,
    ExtensionError,
    InvalidCredentialsError,
    InvalidOperationError,
    InvalidTokenError,
    RegistrationDisabledError,
    ResourceNotFoundError,
    ValidationError,
)


class TestCMSError:
    def test_defaults(self):
        exc = CMSError("Test error")
        assert str(exc) == "Test error"
        assert exc.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert exc.error_code == ErrorCode.INTERNAL_ERROR
        assert exc.details == {}

    def test_error_code_override(self):
        exc = CMSError("x", error_code=ErrorCode.SERVICE_UNAVAILABLE)
        assert exc.error_code == ErrorCode.SERVICE_UNAVAILABLE


class TestSubclasses:
    def test_status_codes(self):
        assert AuthenticationError().status_code == 401
        assert InvalidCredentialsError().status_code == 401
        assert InvalidTokenError().status_code == 401
        assert AuthorizationError().status_code == 403
        assert RegistrationDisabledError().status_code == 403
        assert ResourceNotFoundError("Plugin", "seo").status_code == 404
        assert ValidationError("bad").status_code == 400
        assert InvalidOperationError("no").status_code == 400
        assert ExtensionError("boom").status_code == 400
        assert DuplicateResourceError("Role", "slug", "user").status_code == 409
        assert ConfigurationError("missing").status_code == 500

    def test_details(self):
        assert ResourceNotFoundError("Plugin", "seo").message == "Plugin 'seo' not found"
        assert ValidationError("bad", field="email").details == {"field": "email"}
        assert AuthorizationError(required_capabilities=["read"]).details == {"required_capabilities": ["read"]}
        assert ExtensionError("boom", extension="seo").details == {"extension": "seo"}
        assert DuplicateResourceError("Role", "slug", "user").details["value"] == "user"

    def test_hierarchy(self):
        assert isinstance(InvalidTokenError(), AuthenticationError)
        assert isinstance(ExtensionError("x"), CMSError)


class TestErrorEnvelope:
    async def test_not_found_envelope(self, client, admin_headers):
        response = await client.get("/api/v1/plugins/missing", headers=admin_headers)

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["error_code"] == "RESOURCE_NOT_FOUND"
        assert error["type"] == "Not Found"
        assert error["path"] == "/api/v1/plugins/missing"
        assert error["details"] == {"resource_type": "Plugin", "resource_id": "missing"}

    async def test_request_validation_envelope(self, client):
        response = await client.post("/api/v1/auth/login", json={"email": "not-an-email"})

        assert response.status_code == 422
        fields = {item["field"] for item in response.json()["error"]["details"]["validation_errors"]}
        assert {"email", "password"} <= fields

    async def test_missing_token(self, client):
        response = await client.get("/api/v1/options/")

        assert response.status_code == 401
        assert response.json()["error"]["type"] == "Unauthorized"
