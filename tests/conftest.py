from pathlib import Path

import pytest

from momentum.config import AppSettings, ProviderConfig, RetryConfig
from momentum.main import Services, create_services
from tests.fakes import FakeCompletionBackend


def make_settings(tmp_path: Path, **overrides) -> AppSettings:
    settings = AppSettings(
        fast_provider=ProviderConfig(name="Groq", base_url="http://fast.test/v1", model_id="fast-model", api_key="k1"),
        standard_provider=ProviderConfig(
            name="OpenAI", base_url="http://standard.test/v1", model_id="standard-model", api_key="k2"
        ),
        premium_provider=ProviderConfig(
            name="OpenAI", base_url="http://premium.test/v1", model_id="premium-model", api_key="k2"
        ),
        retry=RetryConfig(max_retries=3, base_delay_s=0.0),
        database_path=str(tmp_path / "test.db"),
    )
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


@pytest.fixture
def settings(tmp_path: Path) -> AppSettings:
    return make_settings(tmp_path)


@pytest.fixture
def fake_backend() -> FakeCompletionBackend:
    return FakeCompletionBackend()


@pytest.fixture
async def services(settings: AppSettings, fake_backend: FakeCompletionBackend) -> Services:
    svc = create_services(settings, backend=fake_backend)
    await svc.init()
    try:
        yield svc
    finally:
        await svc.close()
