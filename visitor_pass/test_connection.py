import pytest

from visitor_pass.infrastructure.database.connection import resolve_database_url


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("postgres://u:p@db/passes", "postgresql+asyncpg://u:p@db/passes"),
        ("postgresql://u:p@db/passes", "postgresql+asyncpg://u:p@db/passes"),
        ("postgresql+asyncpg://u:p@db/passes", "postgresql+asyncpg://u:p@db/passes"),
        ("sqlite+aiosqlite:///./passes.db", "sqlite+aiosqlite:///./passes.db"),
    ],
)
def test_database_url_is_rewritten_for_asyncpg(raw, expected):
    assert resolve_database_url(raw) == expected


def test_empty_database_url_is_rejected():
    with pytest.raises(RuntimeError):
        resolve_database_url("")
