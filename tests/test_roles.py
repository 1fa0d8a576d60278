import pytest

from user_migration.roles import Role, normalize_role, promote_role


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("admin", Role.ADMINISTRATOR),
        ("SuperAdmin", Role.ADMINISTRATOR),
        ("trusted_user", Role.TRUSTED),
        ("user", Role.COMMON),
        ("betrug", Role.FLAGGED),
        (0, Role.ADMINISTRATOR),
        ("1", Role.TRUSTED),
        (3, Role.FLAGGED),
        (7, Role.COMMON),
        ("wizard", Role.COMMON),
        (None, Role.COMMON),
        (True, Role.COMMON),
        (Role.TRUSTED, Role.TRUSTED),
    ],
)
def test_normalize_role(value, expected) -> None:
    assert normalize_role(value) is expected


def test_promote_role_only_moves_up() -> None:
    assert promote_role("user", Role.TRUSTED) is Role.TRUSTED
    assert promote_role("admin", Role.TRUSTED) is Role.ADMINISTRATOR
    assert promote_role(Role.TRUSTED, Role.ADMINISTRATOR) is Role.ADMINISTRATOR
    assert promote_role(Role.FLAGGED, Role.COMMON) is Role.COMMON
