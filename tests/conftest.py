"""Shared test fixtures."""

import pytest
import structlog
from pydantic import BaseModel

from fleetscout.datastore import Datastore, DatastoreError
from fleetscout.models import (
    AppConfig,
    FreeScoutIntegration,
    FreeScoutOptions,
    HostVulnerabilitySummary,
    Integrations,
    QueuedJob,
    Team,
)
from fleetscout.providers.base import TicketClient

FREESCOUT_URL = "https://help.example.com"
FLEET_URL = "https://fleet.example.com"


class FakeDatastore(Datastore):
    """In-memory datastore; tests mutate its attributes between calls."""

    def __init__(self) -> None:
        self.config = AppConfig()
        self.teams: dict[int, Team] = {}
        self.hosts: list[HostVulnerabilitySummary] = []
        self.hosts_by_software: dict[int, list[HostVulnerabilitySummary]] = {}
        self.queued: list[QueuedJob] = []
        self.calls: list[str] = []

    def app_config(self) -> AppConfig:
        self.calls.append("app_config")
        return self.config

    def team_lite(self, team_id: int) -> Team:
        self.calls.append("team_lite")
        if team_id not in self.teams:
            raise DatastoreError(f"Team {team_id} not found")
        return self.teams[team_id]

    def hosts_by_cve(self, cve: str) -> list[HostVulnerabilitySummary]:
        self.calls.append("hosts_by_cve")
        return self.hosts

    def host_vuln_summaries_by_software_ids(self, software_ids: list[int]) -> list[HostVulnerabilitySummary]:
        self.calls.append("host_vuln_summaries_by_software_ids")
        if self.hosts_by_software:
            seen: dict[int, HostVulnerabilitySummary] = {}
            for sid in software_ids:
                for host in self.hosts_by_software.get(sid, []):
                    seen[host.id] = host
            return list(seen.values())
        return self.hosts

    def queue_job(self, name: str, args: BaseModel) -> QueuedJob:
        job = QueuedJob(id=str(len(self.queued) + 1), name=name, args=args.model_dump(mode="json", exclude_none=True))
        self.queued.append(job)
        return job


class FakeClient(TicketClient):
    def __init__(self, options: FreeScoutOptions) -> None:
        self.options = options
        self.created: list[tuple[str, str]] = []
        self.conversation_id = 42

    def create_conversation(self, subject: str, body: str) -> int:
        self.created.append((subject, body))
        return self.conversation_id

    def config_matches(self, options: FreeScoutOptions) -> bool:
        return self.options == options


class CountingFactory:
    """Client factory that records every client it builds."""

    def __init__(self) -> None:
        self.built: list[FakeClient] = []

    def __call__(self, options: FreeScoutOptions) -> FakeClient:
        client = FakeClient(options)
        self.built.append(client)
        return client


def make_integration(**overrides) -> FreeScoutIntegration:
    fields = {
        "url": FREESCOUT_URL,
        "api_token": "fs_api_token_12345",
        "mailbox_id": 3,
        "customer_email": "fleet@example.com",
        "assign_to": 0,
        "enable_software_vulnerabilities": True,
        "enable_failing_policies": True,
    }
    fields.update(overrides)
    return FreeScoutIntegration(**fields)


def make_hosts(count: int) -> list[HostVulnerabilitySummary]:
    return [HostVulnerabilitySummary(id=i, display_name=f"host-{i}") for i in range(1, count + 1)]


@pytest.fixture(autouse=True)
def reset_structlog():
    """CLI commands configure structlog against the runner's streams; undo that after each test."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def options() -> FreeScoutOptions:
    return FreeScoutOptions(
        url=FREESCOUT_URL,
        api_token="fs_api_token_12345",
        mailbox_id=3,
        customer_email="fleet@example.com",
    )


@pytest.fixture
def datastore() -> FakeDatastore:
    ds = FakeDatastore()
    ds.config = AppConfig(server_url=FLEET_URL, integrations=Integrations(freescout=[make_integration()]))
    return ds


@pytest.fixture
def factory() -> CountingFactory:
    return CountingFactory()
