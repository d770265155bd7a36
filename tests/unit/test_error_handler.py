"""
Tests for error handler middleware and custom exceptions.
"""
import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from pydantic import BaseModel, Field

from mediaportal.api.middleware.error_handler import (
    AppException,
    NotFoundException,
    BadRequestException,
    ConflictException,
    ValidationException,
    TooManyRequestsException,
    to_app_exception,
    app_exception_handler,
    core_error_handler,
    validation_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)
from mediaportal.lib.errors import (
    CoreError,
    EndpointNotFoundError,
    InvalidEndpointConfigError,
    InvalidScheduleError,
    JobNotFoundError,
)


@pytest.mark.unit
def test_app_exception_creation():
    """Test creating custom AppException."""
    exc = AppException(
        message="Test error",
        status_code=500,
        details={"key": "value"},
    )

    assert exc.message == "Test error"
    assert exc.status_code == 500
    assert exc.details == {"key": "value"}
    assert exc.headers == {}


@pytest.mark.unit
def test_not_found_exception():
    """Test NotFoundException creation."""
    exc = NotFoundException("Job", "7")

    assert exc.message == "Job with id '7' not found"
    assert exc.status_code == 404
    assert exc.details["resource"] == "Job"
    assert exc.details["resource_id"] == "7"


@pytest.mark.unit
def test_not_found_exception_without_id():
    """Test NotFoundException without resource ID."""
    exc = NotFoundException("Job")

    assert exc.message == "Job not found"
    assert exc.status_code == 404


@pytest.mark.unit
def test_bad_request_exception():
    """Test BadRequestException creation."""
    exc = BadRequestException("Invalid input", details={"field": "schedule"})

    assert exc.message == "Invalid input"
    assert exc.status_code == 400
    assert exc.details == {"field": "schedule"}


@pytest.mark.unit
def test_conflict_exception():
    """Test ConflictException creation."""
    exc = ConflictException("Job already running")

    assert exc.message == "Job already running"
    assert exc.status_code == 409


@pytest.mark.unit
def test_validation_exception():
    """Test ValidationException creation."""
    exc = ValidationException(
        "Validation failed",
        errors={"webhook_url": "Field required"},
    )

    assert exc.message == "Validation failed"
    assert exc.status_code == 422
    assert exc.details["errors"] == {"webhook_url": "Field required"}


@pytest.mark.unit
def test_too_many_requests_exception():
    """Test TooManyRequestsException carries Retry-After."""
    exc = TooManyRequestsException(42)

    assert exc.status_code == 429
    assert exc.details == {"retry_after_sec": 42}
    assert exc.headers == {"Retry-After": "42"}


@pytest.mark.unit
@pytest.mark.parametrize("error,status_code", [
    (JobNotFoundError("watchlist-sync"), 404),
    (EndpointNotFoundError(3), 404),
    (InvalidEndpointConfigError("discord", [{"loc": ["webhook_url"]}]), 422),
    (InvalidScheduleError("61 * * * *", "bad minute"), 400),
    (CoreError("boom"), 500),
])
def test_to_app_exception_status(error, status_code):
    """Test domain errors map onto HTTP status codes."""
    exc = to_app_exception(error)

    assert exc.status_code == status_code
    assert exc.message == error.message


@pytest.mark.integration
def test_app_exception_handler_in_route():
    """Test custom exception handler in actual route."""
    app = FastAPI()

    # Register exception handler
    app.add_exception_handler(AppException, app_exception_handler)

    @app.get("/test-error")
    async def test_error():
        raise NotFoundException("Job", "123")

    client = TestClient(app)
    response = client.get("/test-error")

    assert response.status_code == 404
    data = response.json()
    assert "error" in data
    assert "Job with id '123' not found" in data["error"]
    assert "correlation_id" in data


@pytest.mark.integration
def test_too_many_requests_sets_retry_after_header():
    """Test the 429 response carries the Retry-After header."""
    app = FastAPI()
    app.add_exception_handler(AppException, app_exception_handler)

    @app.get("/test-throttled")
    async def test_throttled():
        raise TooManyRequestsException(30)

    client = TestClient(app)
    response = client.get("/test-throttled")

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "30"
    assert response.json()["details"]["retry_after_sec"] == 30


@pytest.mark.integration
def test_core_error_handler_in_route():
    """Test domain errors raised by services are translated."""
    app = FastAPI()
    app.add_exception_handler(CoreError, core_error_handler)

    @app.get("/test-core")
    async def test_core():
        raise InvalidScheduleError("not a cron", "wrong number of fields")

    client = TestClient(app)
    response = client.get("/test-core")

    assert response.status_code == 400
    data = response.json()
    assert data["error"] == "Invalid schedule 'not a cron': wrong number of fields"
    assert data["details"]["schedule"] == "not a cron"


@pytest.mark.integration
def test_validation_error_handler():
    """Test Pydantic validation error handler."""
    app = FastAPI()

    # Register exception handler
    from fastapi.exceptions import RequestValidationError
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    class TestModel(BaseModel):
        schedule: str = Field(..., min_length=1)
        interval_seconds: int = Field(..., gt=0)

    @app.post("/test-validation")
    async def test_validation(data: TestModel):
        return {"ok": True}

    client = TestClient(app)

    # Send invalid data
    response = client.post("/test-validation", json={"schedule": "", "interval_seconds": 0})

    assert response.status_code == 422
    data = response.json()
    assert "error" in data
    assert data["error"] == "Validation error"
    assert "details" in data
    assert "errors" in data["details"]


@pytest.mark.integration
def test_http_exception_handler():
    """Test HTTP exception handler."""
    app = FastAPI()

    from starlette.exceptions import HTTPException as StarletteHTTPException
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    @app.get("/test-http-error")
    async def test_http_error():
        raise StarletteHTTPException(status_code=404, detail="Page not found")

    client = TestClient(app)
    response = client.get("/test-http-error")

    assert response.status_code == 404
    data = response.json()
    assert "error" in data
    assert data["error"] == "Page not found"
    assert "correlation_id" in data


@pytest.mark.integration
def test_unhandled_exception_handler():
    """Test handler for unhandled exceptions."""
    app = FastAPI()

    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/test-unhandled")
    async def test_unhandled():
        raise ValueError("Unexpected error")

    client = TestClient(app, raise_server_exceptions=False)
    response = client.get("/test-unhandled")

    assert response.status_code == 500
    data = response.json()
    assert "error" in data
    assert data["error"] == "Internal server error"
    assert "correlation_id" in data


@pytest.mark.integration
def test_exception_with_correlation_id():
    """Test that correlation ID is included in error response."""
    app = FastAPI()

    app.add_exception_handler(AppException, app_exception_handler)

    @app.get("/test-correlation")
    async def test_correlation(request: Request):
        # Set correlation ID
        request.state.correlation_id = "test-correlation-123"
        raise BadRequestException("Test error")

    client = TestClient(app)
    response = client.get("/test-correlation")

    assert response.status_code == 400
    data = response.json()
    assert data["correlation_id"] == "test-correlation-123"
