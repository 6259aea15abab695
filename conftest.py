import pytest

from helpdesk_core.workflows.defaults import (
    DEFAULT_DONE_STATUSES,
    DEFAULT_WORKING_STATUSES,
    SYSTEM_DEFAULT_NAME,
)


@pytest.fixture(autouse=True)
def _test_settings(settings):
    # Plain-http test client: no redirects, no secure-only cookies
    settings.SECURE_SSL_REDIRECT = False
    settings.SESSION_COOKIE_SECURE = False
    settings.CSRF_COOKIE_SECURE = False
    settings.SECURE_HSTS_SECONDS = 0

    # Same workflow knobs regardless of the environment's .env
    settings.HELPDESK_WORKFLOWS = {
        "DEFAULT_WORKING_STATUSES": list(DEFAULT_WORKING_STATUSES),
        "DEFAULT_DONE_STATUSES": list(DEFAULT_DONE_STATUSES),
        "SYSTEM_DEFAULT_NAME": SYSTEM_DEFAULT_NAME,
    }
