"""Shared pydantic models: the contract between the datastore, the client and the worker."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, SecretStr, TypeAdapter, field_validator


class IntegrationKind(str, Enum):
    VULN = "vuln"
    FAILING_POLICY = "failing_policy"


class FreeScoutOptions(BaseModel):
    """Everything needed to build a FreeScout client. Compared field by field."""

    model_config = ConfigDict(frozen=True)

    url: str
    api_token: SecretStr
    mailbox_id: int
    customer_email: str
    assign_to: int = 0  # 0 = leave unassigned

    @field_validator("url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class FreeScoutIntegration(BaseModel):
    """A FreeScout entry in the global integrations config."""

    model_config = ConfigDict(frozen=True)

    url: str
    api_token: SecretStr = SecretStr("")
    mailbox_id: int = 0
    customer_email: str = ""
    assign_to: int = 0
    enable_software_vulnerabilities: bool = False
    enable_failing_policies: bool = False

    def to_options(self) -> FreeScoutOptions:
        return FreeScoutOptions(
            url=self.url,
            api_token=self.api_token,
            mailbox_id=self.mailbox_id,
            customer_email=self.customer_email,
            assign_to=self.assign_to,
        )


class TeamFreeScoutIntegration(BaseModel):
    """A team-level entry; credentials live on the matching global entry."""

    model_config = ConfigDict(frozen=True)

    url: str
    mailbox_id: int
    enable_failing_policies: bool = False


class Integrations(BaseModel):
    model_config = ConfigDict(frozen=True)

    freescout: list[FreeScoutIntegration] = []


class TeamIntegrations(BaseModel):
    model_config = ConfigDict(frozen=True)

    freescout: list[TeamFreeScoutIntegration] = []


class AppConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    server_url: str | None = None
    integrations: Integrations = Integrations()


class Team(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    integrations: TeamIntegrations = TeamIntegrations()


# ---------------------------------------------------------------------------
# Hosts, policies, vulnerabilities
# ---------------------------------------------------------------------------


class HostVulnerabilitySummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    display_name: str
    software_installed_paths: list[str] = []


class PolicySetHost(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    hostname: str = ""
    display_name: str


class Policy(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    critical: bool = False
    team_id: int | None = None


class SoftwareVulnerability(BaseModel):
    model_config = ConfigDict(frozen=True)

    cve: str
    software_id: int


class CVEMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    cve: str
    epss_probability: float | None = None
    cvss_score: float | None = None
    cisa_known_exploit: bool | None = None
    published: datetime | None = None


# ---------------------------------------------------------------------------
# Job arguments
# ---------------------------------------------------------------------------


class VulnArgs(BaseModel):
    model_config = ConfigDict(frozen=True)

    cve: str
    affected_software_ids: list[int] = []
    epss_probability: float | None = None
    cvss_score: float | None = None
    cisa_known_exploit: bool | None = None
    cve_published: datetime | None = None


class FailingPolicyArgs(BaseModel):
    model_config = ConfigDict(frozen=True)

    policy_id: int
    policy_name: str
    policy_critical: bool = False
    team_id: int | None = None
    hosts: list[PolicySetHost] = []


class VulnerabilityJob(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    vulnerability: VulnArgs

    @property
    def kind(self) -> IntegrationKind:
        return IntegrationKind.VULN

    @property
    def team_id(self) -> int | None:
        return None


class FailingPolicyJob(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    failing_policy: FailingPolicyArgs

    @property
    def kind(self) -> IntegrationKind:
        return IntegrationKind.FAILING_POLICY

    @property
    def team_id(self) -> int | None:
        return self.failing_policy.team_id


JobArgs = VulnerabilityJob | FailingPolicyJob

_JOB_ARGS = TypeAdapter(JobArgs)


def parse_job_args(payload: bytes | str) -> JobArgs:
    """Parse a job payload; exactly one of ``vulnerability`` / ``failing_policy`` must be present."""
    return _JOB_ARGS.validate_json(payload)


class QueuedJob(BaseModel):
    """A record in the job queue."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    args: dict
    created_at: datetime = Field(default_factory=datetime.now)
