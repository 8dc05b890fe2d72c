from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Iterator
from datetime import datetime, timezone

import asyncpg
import pytest
import pytest_asyncio
from dotenv import load_dotenv
from faker import Faker

from src.config.db_settings import PoolConfig
from src.config.settings import ConsoleSettings, get_settings
from src.db.pool import close_pool, init_pool
from src.infra.result import reset_error_metrics
from src.models.vic_report_models import (
    ReportPriority,
    ReportStatus,
    ReportType,
    VicReport,
)


@pytest.fixture
def faker() -> Faker:
    """Faker with Indian and English locales for voter and node names."""
    return Faker(["en_IN", "en_US"])


@pytest.fixture
def console_settings() -> ConsoleSettings:
    return ConsoleSettings()


@pytest.fixture(autouse=True)
def _clean_state() -> Iterator[None]:
    get_settings.cache_clear()
    reset_error_metrics()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_report(faker: Faker) -> Callable[..., VicReport]:
    """Factory for a freshly submitted report: Pending, empty timeline."""

    def _make(**overrides: object) -> VicReport:
        fields: dict[str, object] = {
            "id": faker.random_int(min=1, max=10_000),
            "status": ReportStatus.PENDING,
            "priority": ReportPriority.MEDIUM,
            "report_type": ReportType.COMPLAINT,
            "submitted_by": 9001,
            "submitted_at": datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc),
            "current_level_id": 10,
            "current_level_display_name": "Booth 12",
            "report_content": faker.sentence(),
            "voter_id_epic_no": faker.bothify("???#######").upper(),
            "voter_first_name": faker.first_name(),
            "voter_last_name": faker.last_name(),
            "part_no": str(faker.random_int(min=1, max=400)),
            "voter_relative_name": faker.name(),
        }
        fields.update(overrides)
        return VicReport(**fields)  # type: ignore[arg-type]

    return _make


@pytest_asyncio.fixture
async def db_pool() -> AsyncIterator[asyncpg.Pool]:
    """Initialise the shared asyncpg pool for database-centric tests."""
    try:
        load_dotenv(override=False)
        config = PoolConfig.model_validate({})
    except (ValueError, RuntimeError) as exc:
        pytest.skip(f"Skipping database tests: {exc}")

    try:
        pool = await init_pool(config)
    except (OSError, asyncpg.PostgresError) as exc:
        pytest.skip(f"Skipping database tests: {exc}")
    try:
        yield pool
    finally:
        await close_pool()
        await asyncio.sleep(0.1)
