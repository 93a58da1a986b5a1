"""Fleet state collaborator: abstract interface plus a TOML-file implementation."""

import json
import threading
import uuid
from abc import ABC, abstractmethod
from pathlib import Path

import tomlkit
from pydantic import BaseModel, ValidationError
from tomlkit.exceptions import ParseError

from fleetscout.models import AppConfig, HostVulnerabilitySummary, QueuedJob, Team


class DatastoreError(RuntimeError):
    pass


class Datastore(ABC):
    @abstractmethod
    def app_config(self) -> AppConfig: ...

    @abstractmethod
    def team_lite(self, team_id: int) -> Team: ...

    @abstractmethod
    def hosts_by_cve(self, cve: str) -> list[HostVulnerabilitySummary]: ...

    @abstractmethod
    def host_vuln_summaries_by_software_ids(self, software_ids: list[int]) -> list[HostVulnerabilitySummary]: ...

    @abstractmethod
    def queue_job(self, name: str, args: BaseModel) -> QueuedJob: ...


class TomlDatastore(Datastore):
    """Reads fleet state from a TOML file and appends queued jobs to a JSON-lines file.

    The state file is re-read on every call so that integration changes made
    between jobs are picked up by the next one.

    Layout::

        server_url = "https://fleet.example.com"

        [[integrations.freescout]]
        url = "https://help.example.com"
        api_token = "..."
        mailbox_id = 3
        customer_email = "fleet@example.com"
        enable_failing_policies = true

        [[teams]]
        id = 7
        name = "Workstations"
        [[teams.integrations.freescout]]
        url = "https://help.example.com"
        mailbox_id = 3
        enable_failing_policies = true

        [[hosts]]
        id = 1
        display_name = "alice-mbp"
        [[hosts.software]]
        id = 10
        cves = ["CVE-2024-0001"]
        installed_paths = ["/Applications/Foo.app"]
    """

    def __init__(self, state_path: Path, jobs_path: Path) -> None:
        self._state_path = state_path
        self._jobs_path = jobs_path
        self._jobs_lock = threading.Lock()

    def _load(self) -> dict:
        if not self._state_path.exists():
            return {}
        try:
            with self._state_path.open() as fh:
                return tomlkit.load(fh).unwrap()
        except ParseError as exc:
            raise DatastoreError(f"Could not parse {self._state_path}: {exc}") from exc

    def app_config(self) -> AppConfig:
        state = self._load()
        try:
            return AppConfig(
                server_url=state.get("server_url"),
                integrations=state.get("integrations", {}),
            )
        except ValidationError as exc:
            raise DatastoreError(f"Invalid app config in {self._state_path}: {exc}") from exc

    def team_lite(self, team_id: int) -> Team:
        for team in self._load().get("teams", []):
            if team.get("id") == team_id:
                try:
                    return Team.model_validate(team)
                except ValidationError as exc:
                    raise DatastoreError(f"Invalid team {team_id} in {self._state_path}: {exc}") from exc
        raise DatastoreError(f"Team {team_id} not found")

    def _summaries(self, matches) -> list[HostVulnerabilitySummary]:
        result = []
        for host in self._load().get("hosts", []):
            paths: list[str] = []
            affected = False
            for software in host.get("software", []):
                if matches(software):
                    affected = True
                    paths.extend(software.get("installed_paths", []))
            if affected:
                result.append(
                    HostVulnerabilitySummary(
                        id=host["id"],
                        display_name=host.get("display_name") or host.get("hostname", ""),
                        software_installed_paths=paths,
                    )
                )
        return sorted(result, key=lambda h: h.id)

    def hosts_by_cve(self, cve: str) -> list[HostVulnerabilitySummary]:
        return self._summaries(lambda sw: cve in sw.get("cves", []))

    def host_vuln_summaries_by_software_ids(self, software_ids: list[int]) -> list[HostVulnerabilitySummary]:
        wanted = set(software_ids)
        return self._summaries(lambda sw: sw.get("id") in wanted)

    def queue_job(self, name: str, args: BaseModel) -> QueuedJob:
        job = QueuedJob(
            id=uuid.uuid4().hex,
            name=name,
            args=args.model_dump(mode="json", exclude_none=True),
        )
        with self._jobs_lock:
            self._jobs_path.parent.mkdir(parents=True, exist_ok=True)
            with self._jobs_path.open("a") as fh:
                fh.write(job.model_dump_json() + "\n")
        return job

    def pending_jobs(self) -> list[QueuedJob]:
        if not self._jobs_path.exists():
            return []
        jobs = []
        for lineno, line in enumerate(self._jobs_path.read_text().splitlines(), start=1):
            if not line.strip():
                continue
            try:
                jobs.append(QueuedJob.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as exc:
                raise DatastoreError(f"Corrupt job on line {lineno} of {self._jobs_path}: {exc}") from exc
        return jobs

    def clear_jobs(self, done: set[str]) -> None:
        """Drop the given job ids from the queue file, keeping the rest."""
        with self._jobs_lock:
            remaining = [job for job in self.pending_jobs() if job.id not in done]
            self._jobs_path.write_text("".join(job.model_dump_json() + "\n" for job in remaining))
