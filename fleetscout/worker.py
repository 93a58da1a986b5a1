"""FreeScout job processor and the producers that queue its jobs."""

from collections.abc import Callable, Mapping

import structlog
from pydantic import ValidationError

from fleetscout.cache import ClientCache, ClientCacheKey
from fleetscout.datastore import Datastore
from fleetscout.integrations import resolve_options
from fleetscout.models import (
    CVEMeta,
    FailingPolicyArgs,
    FailingPolicyJob,
    FreeScoutOptions,
    JobArgs,
    Policy,
    PolicySetHost,
    QueuedJob,
    SoftwareVulnerability,
    VulnArgs,
    VulnerabilityJob,
    parse_job_args,
)
from fleetscout.providers.base import TicketClient
from fleetscout.providers.freescout import FreeScoutClient
from fleetscout.templates import (
    NVD_CVE_URL,
    FailingPolicyTemplateArgs,
    VulnTemplateArgs,
    failing_policy_description,
    failing_policy_summary,
    vuln_description,
    vuln_summary,
)

JOB_NAME = "freescout"

logger = structlog.get_logger()


class JobError(RuntimeError):
    """A job step failed; the message starts with the step name."""


class FreeScoutJob:
    """Processes queued FreeScout jobs. Safe to call ``run`` from several threads."""

    name = JOB_NAME

    def __init__(
        self,
        fleet_url: str,
        datastore: Datastore,
        client_factory: Callable[[FreeScoutOptions], TicketClient] = FreeScoutClient,
        cache: ClientCache | None = None,
        nvd_url: str = NVD_CVE_URL,
    ) -> None:
        self.fleet_url = fleet_url.rstrip("/")
        self.datastore = datastore
        self.nvd_url = nvd_url
        self.cache = cache or ClientCache(client_factory)

    def get_client(self, args: JobArgs) -> TicketClient | None:
        """Return the client for this job, or None if its integration is no longer enabled."""
        key = ClientCacheKey(kind=args.kind, team_id=args.team_id)
        # Resolved outside the cache lock; only the cache mutation is serialized.
        options = resolve_options(self.datastore, args.kind, args.team_id)
        return self.cache.resolve(key, options)

    def run(self, payload: bytes | str) -> int | None:
        """Run one job and return the conversation id, or None if there was nothing to do."""
        try:
            args = parse_job_args(payload)
        except ValidationError as exc:
            raise JobError(f"unmarshal args: {exc}") from exc

        try:
            client = self.get_client(args)
        except Exception as exc:
            raise JobError(f"get FreeScout client: {exc}") from exc
        if client is None:
            # Queued while an integration was enabled, disabled since then.
            logger.info("freescout_integration_disabled", kind=args.kind.value, team_id=args.team_id)
            return None

        match args:
            case VulnerabilityJob():
                return self._run_vuln(client, args.vulnerability)
            case FailingPolicyJob():
                return self._run_failing_policy(client, args.failing_policy)

    def _run_vuln(self, client: TicketClient, vargs: VulnArgs) -> int:
        try:
            # Older payloads carry no software ids; fall back to the slower CVE lookup.
            if vargs.affected_software_ids:
                hosts = self.datastore.host_vuln_summaries_by_software_ids(vargs.affected_software_ids)
            else:
                hosts = self.datastore.hosts_by_cve(vargs.cve)
        except Exception as exc:
            raise JobError(f"fetching hosts: {exc}") from exc

        tpl_args = VulnTemplateArgs(
            fleet_url=self.fleet_url,
            nvd_url=self.nvd_url,
            cve=vargs.cve,
            hosts=hosts,
            epss_probability=vargs.epss_probability,
            cvss_score=vargs.cvss_score,
            cisa_known_exploit=vargs.cisa_known_exploit,
            cve_published=vargs.cve_published,
        )
        conversation_id = self._create_conversation(client, vuln_summary(tpl_args), vuln_description(tpl_args))
        logger.debug(
            "freescout_conversation_created",
            cve=vargs.cve,
            conversation_id=conversation_id,
        )
        return conversation_id

    def _run_failing_policy(self, client: TicketClient, pargs: FailingPolicyArgs) -> int:
        tpl_args = FailingPolicyTemplateArgs(
            fleet_url=self.fleet_url,
            policy_id=pargs.policy_id,
            policy_name=pargs.policy_name,
            policy_critical=pargs.policy_critical,
            team_id=pargs.team_id,
            hosts=pargs.hosts,
        )
        conversation_id = self._create_conversation(
            client, failing_policy_summary(tpl_args), failing_policy_description(tpl_args)
        )
        log = logger.bind(policy_id=pargs.policy_id, policy_name=pargs.policy_name)
        if pargs.team_id is not None:
            log = log.bind(team_id=pargs.team_id)
        log.debug("freescout_conversation_created", conversation_id=conversation_id)
        return conversation_id

    def _create_conversation(self, client: TicketClient, subject: str, body: str) -> int:
        try:
            return client.create_conversation(subject, body)
        except Exception as exc:
            raise JobError(f"create conversation: {exc}") from exc


# ---------------------------------------------------------------------------
# Producers
# ---------------------------------------------------------------------------


def queue_vuln_jobs(
    datastore: Datastore,
    recent_vulns: list[SoftwareVulnerability],
    cve_meta: Mapping[str, CVEMeta] | None = None,
) -> list[QueuedJob]:
    """Queue one job per CVE, carrying every affected software id and any known metadata."""
    cve_meta = cve_meta or {}
    logger.info("freescout_queue_vulns", enabled=True, recent_vulns=len(recent_vulns))

    grouped: dict[str, list[int]] = {}
    for vuln in recent_vulns:
        grouped.setdefault(vuln.cve, []).append(vuln.software_id)
    logger.debug("freescout_recent_cves", recent_cves=sorted(grouped))

    jobs = []
    for cve in sorted(grouped):
        fields: dict = {"cve": cve, "affected_software_ids": grouped[cve]}
        meta = cve_meta.get(cve)
        if meta is not None:
            fields.update(
                epss_probability=meta.epss_probability,
                cvss_score=meta.cvss_score,
                cisa_known_exploit=meta.cisa_known_exploit,
                cve_published=meta.published,
            )
        try:
            job = datastore.queue_job(JOB_NAME, VulnerabilityJob(vulnerability=VulnArgs(**fields)))
        except Exception as exc:
            raise JobError(f"queueing job: {exc}") from exc
        logger.debug("freescout_job_queued", job_id=job.id, cve=cve)
        jobs.append(job)
    return jobs


def queue_failing_policy_job(
    datastore: Datastore,
    policy: Policy,
    hosts: list[PolicySetHost],
) -> QueuedJob | None:
    """Queue a job for a failing policy; returns None without queuing when no host failed."""
    log = logger.bind(failing_policy=policy.id, hosts_count=len(hosts))
    if policy.team_id is not None:
        log = log.bind(team_id=policy.team_id)
    if not hosts:
        log.debug("freescout_queue_failing_policy_skipped", reason="skipping, no host")
        return None

    log.info("freescout_queue_failing_policy", enabled=True)
    args = FailingPolicyJob(
        failing_policy=FailingPolicyArgs(
            policy_id=policy.id,
            policy_name=policy.name,
            policy_critical=policy.critical,
            team_id=policy.team_id,
            hosts=hosts,
        )
    )
    try:
        job = datastore.queue_job(JOB_NAME, args)
    except Exception as exc:
        raise JobError(f"queueing job: {exc}") from exc
    log.debug("freescout_job_queued", job_id=job.id)
    return job
