"""Resolve the FreeScout integration that applies to a job, and validate integration entries."""

from urllib.parse import urlparse

from fleetscout.datastore import Datastore
from fleetscout.models import (
    FreeScoutIntegration,
    FreeScoutOptions,
    IntegrationKind,
    TeamFreeScoutIntegration,
)


class IntegrationError(RuntimeError):
    pass


def match_team_integrations(
    team_entries: list[TeamFreeScoutIntegration],
    global_entries: list[FreeScoutIntegration],
) -> list[FreeScoutIntegration]:
    """Pair each team entry with the global entry of the same URL and mailbox.

    The returned entries carry the global credentials and the team's enable flags.
    """
    by_key = {(g.url.rstrip("/"), g.mailbox_id): g for g in global_entries}
    matched = []
    for entry in team_entries:
        glob = by_key.get((entry.url.rstrip("/"), entry.mailbox_id))
        if glob is None:
            raise IntegrationError(
                f"FreeScout integration {entry.url} (mailbox {entry.mailbox_id}) is not configured globally"
            )
        matched.append(
            glob.model_copy(
                update={
                    "enable_software_vulnerabilities": False,
                    "enable_failing_policies": entry.enable_failing_policies,
                }
            )
        )
    return matched


def _enabled_for(entry: FreeScoutIntegration, kind: IntegrationKind) -> bool:
    match kind:
        case IntegrationKind.VULN:
            return entry.enable_software_vulnerabilities
        case IntegrationKind.FAILING_POLICY:
            return entry.enable_failing_policies


def resolve_options(
    datastore: Datastore,
    kind: IntegrationKind,
    team_id: int | None = None,
) -> FreeScoutOptions | None:
    """Return the options of the first enabled integration for kind, or None if none is enabled.

    Team-scoped lookups only apply to failing policies; vulnerabilities always
    use the global config.
    """
    app_config = datastore.app_config()

    if kind == IntegrationKind.FAILING_POLICY and team_id is not None:
        team = datastore.team_lite(team_id)
        entries = match_team_integrations(team.integrations.freescout, app_config.integrations.freescout)
    else:
        entries = app_config.integrations.freescout

    for entry in entries:
        if _enabled_for(entry, kind):
            return entry.to_options()
    return None


def integration_name(entry: FreeScoutIntegration) -> str:
    return f"{entry.url} - {entry.mailbox_id}"


def _valid_https_url(url: str) -> bool:
    if any(c.isspace() for c in url):
        return False
    parsed = urlparse(url)
    return parsed.scheme == "https" and bool(parsed.hostname)


def validate_integration(entry: FreeScoutIntegration) -> list[str]:
    """Return the problems that would keep the integration form from being submitted."""
    problems = []
    if not entry.url:
        problems.append("URL is required")
    elif not entry.url.startswith("https://"):
        problems.append("URL must start with https://")
    elif not _valid_https_url(entry.url):
        problems.append(f"{entry.url} is not a valid HTTPS URL")
    if not entry.api_token.get_secret_value():
        problems.append("API token is required")
    if not entry.customer_email:
        problems.append("Customer email is required")
    if entry.mailbox_id == 0:
        problems.append("Mailbox ID is required")
    return problems
