"""
Brief: Tests for dockdns.workloads (Docker-backed workload directory).

Inputs:
  - None

Outputs:
  - None
"""

import pytest
import requests
from docker.errors import APIError

from dockdns import workloads
from dockdns.workloads import (
    MIN_ID_PREFIX_LENGTH,
    DirectoryError,
    DockerDirectory,
    WorkloadRecord,
    record_from_attrs,
)


def test_record_from_list_attrs(make_container, web_id):
    rec = record_from_attrs(make_container(web_id, ["/web", "/www"]))
    assert rec == WorkloadRecord(id=web_id, status="running", aliases=("/web", "/www"))
    assert rec.is_running


def test_record_from_inspect_attrs(web_id):
    rec = record_from_attrs(
        {"Id": web_id, "Name": "/web", "State": {"Status": "paused"}}
    )
    assert rec.aliases == ("/web",)
    assert rec.status == "paused"
    assert not rec.is_running


def test_record_status_falls_back_to_human_status(web_id):
    rec = record_from_attrs({"Id": web_id, "Names": [], "Status": "Up 3 hours"})
    assert rec.is_running
    rec = record_from_attrs({"Id": web_id, "Names": [], "Status": "Exited (1)"})
    assert not rec.is_running
    rec = record_from_attrs(
        {"Id": web_id, "Names": [], "Status": "Up 2 hours (Paused)"}
    )
    assert rec.status == "paused"
    assert not rec.is_running


def test_record_without_id_is_rejected():
    with pytest.raises(DirectoryError):
        record_from_attrs({"Names": ["/web"]})


def test_matches_full_id_prefix_and_alias(web_id):
    rec = WorkloadRecord(id=web_id, status="running", aliases=("/web",))
    assert rec.matches(web_id)
    assert rec.matches(web_id[:MIN_ID_PREFIX_LENGTH])
    assert rec.matches(web_id[:40])
    assert rec.matches("web")


def test_short_prefix_never_matches(web_id):
    """
    Brief: Id prefixes shorter than 12 characters are not accepted.

    Inputs:
      - None

    Outputs:
      - None: Asserts 11-character prefix does not match
    """
    rec = WorkloadRecord(id=web_id, status="running", aliases=())
    assert not rec.matches(web_id[: MIN_ID_PREFIX_LENGTH - 1])
    assert not rec.matches("abc")


def test_alias_requires_exact_match(web_id):
    rec = WorkloadRecord(id=web_id, status="running", aliases=("/web",))
    assert not rec.matches("/web")
    assert not rec.matches("we")
    assert not rec.matches("web1")
    assert not rec.matches("")


def test_list_running_workloads_filters_stopped(docker_client, web_id):
    directory = DockerDirectory(docker_client)
    records = directory.list_running_workloads()
    assert [r.id for r in records] == [web_id]
    assert docker_client.list_calls == [{"sparse": True}]


def test_find_workload_skips_stopped_container(docker_client, db_id):
    directory = DockerDirectory(docker_client)
    assert directory.find_workload("db") is None
    assert directory.find_workload(db_id) is None
    assert directory.find_workload(db_id[:20]) is None


def test_find_workload_skips_paused_container(make_docker_client, make_container):
    paused_id = "9" * 64
    client = make_docker_client(
        [
            make_container(
                paused_id, ["/cache"], state="paused", status="Up 2 hours (Paused)"
            )
        ]
    )
    directory = DockerDirectory(client)
    assert directory.find_workload("cache") is None
    assert directory.find_workload(paused_id[:12]) is None


def test_find_workload_by_full_id(docker_client, web_id):
    found = DockerDirectory(docker_client).find_workload(web_id)
    assert found is not None and found.aliases == ("/web",)


def test_find_workload_first_match_wins(make_docker_client, make_container):
    first = "1" * 64
    second = "2" * 64
    client = make_docker_client(
        [make_container(first, ["/app"]), make_container(second, ["/app"])]
    )
    found = DockerDirectory(client).find_workload("app")
    assert found is not None and found.id == first


def test_find_workload_queries_runtime_every_time(docker_client):
    directory = DockerDirectory(docker_client)
    directory.find_workload("web")
    directory.find_workload("web")
    assert len(docker_client.list_calls) == 2


def test_find_workload_empty_name_skips_runtime(docker_client):
    assert DockerDirectory(docker_client).find_workload("") is None
    assert docker_client.list_calls == []


@pytest.mark.parametrize(
    "error",
    [
        APIError("boom"),
        requests.exceptions.ConnectionError("refused"),
        OSError("socket gone"),
    ],
)
def test_list_errors_become_directory_error(make_docker_client, error):
    directory = DockerDirectory(make_docker_client(error=error))
    with pytest.raises(DirectoryError):
        directory.list_running_workloads()


def test_malformed_listing_becomes_directory_error(make_docker_client):
    client = make_docker_client()
    client.attrs = [None]
    with pytest.raises(DirectoryError):
        DockerDirectory(client).list_running_workloads()


def test_ping_failure_raises_directory_error(make_docker_client):
    client = make_docker_client(
        ping_error=requests.exceptions.ConnectionError("no daemon")
    )
    with pytest.raises(DirectoryError):
        DockerDirectory(client).ping()


def test_create_docker_client_uses_url_or_env(monkeypatch):
    calls = {}

    def fake_docker_client(**kwargs):
        calls["url"] = kwargs
        return "url-client"

    def fake_from_env(**kwargs):
        calls["env"] = kwargs
        return "env-client"

    monkeypatch.setattr(workloads.docker, "DockerClient", fake_docker_client)
    monkeypatch.setattr(workloads.docker, "from_env", fake_from_env)

    assert workloads.create_docker_client("unix:///tmp/d.sock", 5) == "url-client"
    assert calls["url"] == {"base_url": "unix:///tmp/d.sock", "timeout": 5}
    assert workloads.create_docker_client() == "env-client"
    assert calls["env"] == {}
