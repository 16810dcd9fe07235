"""Workload directory: live container inventory from the Docker daemon.

Brief:
  - Lists containers through the Docker SDK on every call; nothing is cached,
    so the daemon's current state is the only source of truth.
  - Matches a query name against container ids, id prefixes and names.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

import docker
import requests
from docker.errors import DockerException


# Shorter id prefixes are too likely to collide with ordinary hostnames.
MIN_ID_PREFIX_LENGTH = 12


class DirectoryError(Exception):
    """
    Brief: The container runtime could not be queried or returned garbage.

    Inputs:
    - message: description

    Outputs:
    - Exception instance
    """

    pass


@dataclass(frozen=True)
class WorkloadRecord:
    """Brief: One container as reported by the runtime.

    Inputs:
      - id: Full 64-character hexadecimal container id.
      - status: Lifecycle state, e.g. "running", "exited", "paused".
      - aliases: Container names as Docker reports them, each with its
        leading "/" (e.g. "/web").

    Outputs:
      - WorkloadRecord instance.
    """

    id: str
    status: str
    aliases: Tuple[str, ...] = ()

    @property
    def is_running(self) -> bool:
        return self.status == "running"

    def matches(self, name: str) -> bool:
        """Brief: Check a normalized query name against this workload.

        Inputs:
          - name: Lowercased query name without its trailing dot.

        Outputs:
          - bool: True on exact id, id prefix of at least
            MIN_ID_PREFIX_LENGTH characters, or exact alias match.
        """

        if not name:
            return False
        ident = self.id.lower()
        if ident == name:
            return True
        if len(name) >= MIN_ID_PREFIX_LENGTH and ident.startswith(name):
            return True
        for alias in self.aliases:
            # Docker names always carry a leading "/".
            if alias[1:].lower() == name:
                return True
        return False


def _status_from_attrs(attrs: Dict[str, Any]) -> str:
    """Brief: Derive a lifecycle status from list- or inspect-shaped attrs.

    Inputs:
      - attrs: Container attrs as returned by the Docker SDK.

    Outputs:
      - str: Lowercased status such as "running" or "exited".

    Notes:
      - The list API reports State as a string plus a human Status such as
        "Up 2 hours"; inspect reports State as a mapping with Status.
    """

    state = attrs.get("State")
    if isinstance(state, dict):
        return str(state.get("Status") or "").strip().lower()
    if state:
        return str(state).strip().lower()
    human = str(attrs.get("Status") or "")
    if human.startswith("Up"):
        return "paused" if "(Paused)" in human else "running"
    return human.strip().lower() or "unknown"


def record_from_attrs(attrs: Dict[str, Any]) -> WorkloadRecord:
    """Brief: Build a WorkloadRecord from Docker SDK container attrs.

    Inputs:
      - attrs: Mapping with "Id" and either "Names" (list API) or "Name"
        (inspect API).

    Outputs:
      - WorkloadRecord.

    Raises:
      - DirectoryError: When the id is missing.
    """

    ident = str(attrs.get("Id") or "").strip()
    if not ident:
        raise DirectoryError("container entry without Id")

    names = attrs.get("Names")
    if names is None:
        single = attrs.get("Name")
        names = [single] if single else []
    aliases = tuple(str(n) for n in names if n)

    return WorkloadRecord(id=ident, status=_status_from_attrs(attrs), aliases=aliases)


def create_docker_client(url: Optional[str] = None, timeout: Optional[float] = None):
    """Brief: Construct a Docker SDK client.

    Inputs:
      - url: Optional daemon URL such as "unix:///var/run/docker.sock"; when
        omitted the DOCKER_HOST / DOCKER_TLS_* environment is used.
      - timeout: Optional API timeout in seconds.

    Outputs:
      - docker.DockerClient.

    Raises:
      - DirectoryError: When the client cannot be constructed.
    """

    kwargs: Dict[str, Any] = {}
    if timeout is not None:
        kwargs["timeout"] = timeout
    try:
        if url:
            return docker.DockerClient(base_url=url, **kwargs)
        return docker.from_env(**kwargs)
    except (DockerException, requests.exceptions.RequestException) as exc:
        raise DirectoryError(f"cannot create docker client: {exc}") from exc


class DockerDirectory:
    """Read-only view of the running containers on one Docker daemon.

    The client is injected so tests can supply a stub with a
    ``containers.list()`` method.
    """

    def __init__(self, client) -> None:
        self.client = client

    def ping(self) -> None:
        """Brief: Check that the daemon answers; used once at startup.

        Raises:
          - DirectoryError: When the daemon is unreachable.
        """

        try:
            self.client.ping()
        except (DockerException, requests.exceptions.RequestException, OSError) as exc:
            raise DirectoryError(f"docker daemon unreachable: {exc}") from exc

    def _list_attrs(self) -> Iterable[Dict[str, Any]]:
        try:
            containers = self.client.containers.list(sparse=True)
        except (DockerException, requests.exceptions.RequestException, OSError) as exc:
            raise DirectoryError(f"failed to list containers: {exc}") from exc
        return [c.attrs for c in containers]

    def list_running_workloads(self) -> List[WorkloadRecord]:
        """Brief: Snapshot the running containers, in daemon listing order.

        Inputs:
          - None.

        Outputs:
          - List[WorkloadRecord] restricted to running containers.

        Raises:
          - DirectoryError: On transport failures or malformed listings.
        """

        records: List[WorkloadRecord] = []
        try:
            for attrs in self._list_attrs():
                record = record_from_attrs(attrs)
                if record.is_running:
                    records.append(record)
        except (AttributeError, TypeError) as exc:
            raise DirectoryError(f"malformed container listing: {exc}") from exc
        return records

    def find_workload(self, name: str) -> Optional[WorkloadRecord]:
        """Brief: Return the first running workload that name identifies.

        Inputs:
          - name: Normalized query name (lowercase, no trailing dot).

        Outputs:
          - WorkloadRecord or None.

        Raises:
          - DirectoryError: Propagated from list_running_workloads().
        """

        if not name:
            return None
        for record in self.list_running_workloads():
            if record.matches(name):
                return record
        return None
