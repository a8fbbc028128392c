import asyncio

import pytest

from app.modules.checkout.errors import (
    CheckoutError,
    ErrorKind,
    FormValidationError,
    HandoffError,
    NetworkError,
    ServerError,
    ZoneError,
    classify_error,
    is_retryable,
    user_message,
)


class TestClassifyError:
    @pytest.mark.parametrize(
        "error, kind",
        [
            (ZoneError(), ErrorKind.OUT_OF_ZONE),
            (NetworkError(), ErrorKind.NETWORK),
            (ServerError(status=503), ErrorKind.SERVER),
            (HandoffError(), ErrorKind.HANDOFF),
            (FormValidationError({"email": "Email is required"}), ErrorKind.FORM_VALIDATION),
            (ConnectionRefusedError(), ErrorKind.NETWORK),
            (asyncio.TimeoutError(), ErrorKind.NETWORK),
            (KeyError("boom"), ErrorKind.SERVER),
        ],
    )
    def test_maps_exceptions(self, error, kind):
        assert classify_error(error) is kind

    def test_retryable_kinds(self):
        assert is_retryable(ErrorKind.NETWORK)
        assert is_retryable(ErrorKind.SERVER)
        assert is_retryable(ErrorKind.HANDOFF)
        assert not is_retryable(ErrorKind.OUT_OF_ZONE)
        assert not is_retryable(ErrorKind.FORM_VALIDATION)


class TestCheckoutError:
    def test_default_message_is_user_message(self):
        error = NetworkError()
        assert error.message == user_message(ErrorKind.NETWORK)
        assert str(error) == error.message
        assert error.retryable

    def test_custom_message_kept(self):
        error = ZoneError("Address is 40 miles away")
        assert error.message == "Address is 40 miles away"
        assert not error.retryable

    def test_server_error_keeps_status(self):
        error = ServerError("Bad gateway", status=502)
        assert error.status == 502
        assert isinstance(error, CheckoutError)

    def test_form_error_lists_fields(self):
        error = FormValidationError({"zip_code": "ZIP code is required", "city": "City is required"})
        assert error.errors == {"zip_code": "ZIP code is required", "city": "City is required"}
        assert error.message == "Invalid fields: city, zip_code"

    def test_every_kind_has_a_message(self):
        for kind in ErrorKind:
            assert user_message(kind)

    @pytest.mark.parametrize(
        "error",
        [ZoneError(), NetworkError(), ServerError(), HandoffError(), FormValidationError({})],
    )
    def test_retryable_follows_kind(self, error):
        assert error.retryable is is_retryable(error.kind)
