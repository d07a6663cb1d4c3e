from __future__ import annotations

from pathlib import Path
from typing import Callable

import httpx
import pytest
import structlog
from notes_deploy.core import CancelToken, PipelineConfig
from notes_deploy.credentials import Credential, CredentialVault
from notes_deploy.pipeline import EventSink, RunContext
from notes_deploy.plan import Adapters
from notes_deploy.stages.verify import make_http_client
from pydantic import SecretStr

from fakes import FakeClock, FakeCluster, FakePackager, FakeProducer, FakeRegistry


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cfg() -> PipelineConfig:
    return PipelineConfig(
        build_number=42,
        health_retry_delay_seconds=0,
        rollout_poll_seconds=0.01,
        rollout_timeout_seconds=5,
        publish_retry_delay_seconds=0,
    )


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(
        {"registry": Credential(username="ci", secret=SecretStr("s3cret"))}
    )


@pytest.fixture
def make_ctx(tmp_path: Path) -> Callable[[PipelineConfig], RunContext]:
    def _make(config: PipelineConfig) -> RunContext:
        run_dir = tmp_path / "run"
        return RunContext(
            run_id="test-run",
            run_root=run_dir,
            config=config,
            logger=structlog.get_logger("test"),
            events=EventSink(run_dir / "events.jsonl"),
            cancel=CancelToken(),
        )

    return _make


@pytest.fixture
def health_client() -> Callable[..., httpx.Client]:
    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
        return make_http_client(transport=httpx.MockTransport(handler))

    return _make


@pytest.fixture
def fakes() -> Callable[..., tuple[Adapters, FakeRegistry, FakeCluster]]:
    def _make(
        *,
        http: httpx.Client,
        vault: CredentialVault,
        registry: FakeRegistry | None = None,
        cluster: FakeCluster | None = None,
        producer: FakeProducer | None = None,
    ) -> tuple[Adapters, FakeRegistry, FakeCluster]:
        registry = registry or FakeRegistry()
        cluster = cluster or FakeCluster()
        adapters = Adapters(
            producer=producer or FakeProducer(),
            packager=FakePackager(),
            registry=registry,
            cluster=cluster,
            http=http,
            vault=vault,
        )
        return adapters, registry, cluster

    return _make

