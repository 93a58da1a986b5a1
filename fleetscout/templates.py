"""Render FreeScout conversation subjects and bodies (markdown)."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from fleetscout.models import HostVulnerabilitySummary, PolicySetHost

NVD_CVE_URL = "https://nvd.nist.gov/vuln/detail/"

MAX_HOSTS = 50

_FOOTER = "This conversation was created automatically by your Fleet FreeScout integration."


class VulnTemplateArgs(BaseModel):
    model_config = ConfigDict(frozen=True)

    fleet_url: str
    cve: str
    hosts: list[HostVulnerabilitySummary]
    nvd_url: str = NVD_CVE_URL

    # Optional CVE metadata
    epss_probability: float | None = None
    cvss_score: float | None = None
    cisa_known_exploit: bool | None = None
    cve_published: datetime | None = None


class FailingPolicyTemplateArgs(BaseModel):
    model_config = ConfigDict(frozen=True)

    fleet_url: str
    policy_id: int
    policy_name: str
    policy_critical: bool = False
    team_id: int | None = None
    hosts: list[PolicySetHost]


def vuln_summary(args: VulnTemplateArgs) -> str:
    return f"Vulnerability {args.cve} detected on {len(args.hosts)} host(s)"


def _metadata_lines(args: VulnTemplateArgs) -> list[str]:
    lines = []
    if args.epss_probability is not None:
        lines.append(
            "Probability of exploit (reported by [FIRST.org/epss](https://www.first.org/epss/)): "
            f"{args.epss_probability}"
        )
    if args.cvss_score is not None:
        lines.append(f"CVSS score (reported by [NVD](https://nvd.nist.gov/)): {args.cvss_score}")
    if args.cve_published is not None:
        lines.append(f"Published (reported by [NVD](https://nvd.nist.gov/)): {args.cve_published.isoformat()}")
    if args.cisa_known_exploit is not None:
        known = "Yes" if args.cisa_known_exploit else "No"
        lines.append(
            "Known exploits (reported by [CISA](https://www.cisa.gov/known-exploited-vulnerabilities-catalog)): "
            f"{known}"
        )
    return lines


def vuln_description(args: VulnTemplateArgs) -> str:
    lines = [
        "See vulnerability (CVE) details in National Vulnerability Database (NVD) here: "
        f"[{args.cve}]({args.nvd_url}{args.cve}).",
        "",
    ]

    metadata = _metadata_lines(args)
    if metadata:
        for line in metadata:
            lines += [line, ""]

    lines += ["Affected hosts:", ""]
    for host in args.hosts[:MAX_HOSTS]:
        lines.append(f"* [{host.display_name}]({args.fleet_url}/hosts/{host.id})")
        lines += [f"    * {path}" for path in host.software_installed_paths]

    lines += [
        "",
        "View the affected software and more affected hosts:",
        "",
        f"1. Go to the [Software]({args.fleet_url}/software/manage) page in Fleet.",
        f'2. Above the list of software, in the **Search software** box, enter "{args.cve}".',
        "3. Hover over the affected software and select **View all hosts**.",
        "",
        "----",
        "",
        _FOOTER,
    ]
    return "\n".join(lines) + "\n"


def failing_policy_summary(args: FailingPolicyTemplateArgs) -> str:
    return f"{args.policy_name} policy failed on {len(args.hosts)} host(s)"


def failing_policy_description(args: FailingPolicyTemplateArgs) -> str:
    lines = []
    if args.policy_critical:
        lines += ["This policy is marked as **Critical** in Fleet.", ""]

    lines += ["Hosts:", ""]
    lines += [f"* [{host.display_name}]({args.fleet_url}/hosts/{host.id})" for host in args.hosts[:MAX_HOSTS]]

    query = "order_key=hostname&order_direction=asc&"
    if args.team_id is not None:
        query += f"team_id={args.team_id}&"
    query += f"policy_id={args.policy_id}&policy_response=failing"

    lines += [
        "",
        f"View hosts that failed {args.policy_name} on the "
        f"[**Hosts**]({args.fleet_url}/hosts/manage/?{query}) page in Fleet.",
        "",
        "----",
        "",
        _FOOTER,
    ]
    return "\n".join(lines) + "\n"
