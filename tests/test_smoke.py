"""Smoke tests: every concordia package imports cleanly.

Each test imports a package __init__.py to confirm its re-exports resolve
and no import-time side effect needs a running service.
"""

import pytest


@pytest.mark.unit
def test_import_foundation_domain() -> None:
    import concordia.foundation.domain  # noqa: F401


@pytest.mark.unit
def test_import_foundation_application() -> None:
    import concordia.foundation.application  # noqa: F401


@pytest.mark.unit
def test_import_domain_accounts() -> None:
    import concordia.domain.accounts  # noqa: F401


@pytest.mark.unit
def test_import_infra_persistence() -> None:
    import concordia.infra.persistence  # noqa: F401


@pytest.mark.unit
def test_import_infra_auth() -> None:
    import concordia.infra.auth  # noqa: F401


@pytest.mark.unit
def test_import_infra_media() -> None:
    import concordia.infra.media  # noqa: F401


@pytest.mark.unit
def test_import_infra_observability() -> None:
    import concordia.infra.observability  # noqa: F401


@pytest.mark.unit
def test_import_infra_taskiq() -> None:
    import concordia.infra.taskiq  # noqa: F401


@pytest.mark.unit
def test_import_app() -> None:
    import concordia.app  # noqa: F401
