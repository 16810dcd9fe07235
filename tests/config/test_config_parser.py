"""
Brief: Tests for dockdns.config.config_parser (YAML + environment + overrides).

Inputs:
  - None

Outputs:
  - None
"""

import pytest

from dockdns.config.config_parser import (
    DEFAULT_UPSTREAM_ENDPOINTS,
    ConfigError,
    apply_environment,
    load_config,
    read_config_file,
)


def test_master_ip_from_environment_with_defaults():
    cfg = load_config(environ={"MASTER_IP": "10.0.0.1"})
    assert cfg.master_ip == "10.0.0.1"
    assert cfg.local_docker_names is None
    assert cfg.listen.host == "0.0.0.0"
    assert cfg.listen.port == 53
    assert cfg.upstream.endpoints == DEFAULT_UPSTREAM_ENDPOINTS
    assert cfg.upstream.timeout_ms == 2000
    assert cfg.answer_ttl == 3600
    assert cfg.docker.url is None


@pytest.mark.parametrize("env", [{}, {"MASTER_IP": ""}])
def test_missing_master_ip_is_fatal(env):
    with pytest.raises(ConfigError) as exc:
        load_config(environ=env)
    assert "master_ip" in str(exc.value)


def test_invalid_master_ip_is_fatal():
    with pytest.raises(ConfigError) as exc:
        load_config(environ={"MASTER_IP": "master.local"})
    assert "not a valid IP" in str(exc.value)


def test_yaml_file_with_environment_override(tmp_path):
    path = tmp_path / "dockdns.yaml"
    path.write_text(
        "master_ip: 10.0.0.1\n"
        "local_docker_names: [dns, nginx]\n"
        "listen:\n  host: 127.0.0.1\n  port: 5353\n"
        "upstream:\n  endpoints: [1.1.1.1, ' 8.8.8.8 ']\n  timeout_ms: 800\n"
        "docker:\n  url: unix:///var/run/docker.sock\n  timeout: 3\n"
        "logging:\n  level: debug\n"
    )
    cfg = load_config(
        str(path),
        environ={"MASTER_IP": "10.0.0.2", "DOCKDNS_LISTEN_PORT": "5300"},
    )
    assert cfg.master_ip == "10.0.0.2"
    assert cfg.local_docker_names == "dns,nginx"
    assert cfg.listen.host == "127.0.0.1"
    assert cfg.listen.port == 5300
    assert cfg.upstream.endpoints == ["1.1.1.1", "8.8.8.8"]
    assert cfg.upstream.timeout_ms == 800
    assert cfg.docker.url == "unix:///var/run/docker.sock"
    assert cfg.docker.timeout == 3
    assert cfg.logging == {"level": "debug"}


def test_overrides_win_and_none_is_skipped():
    cfg = load_config(
        environ={"MASTER_IP": "10.0.0.1", "DOCKDNS_LISTEN_HOST": "::"},
        overrides={"listen.host": None, "listen.port": 5454, "logging.level": "warn"},
    )
    assert cfg.listen.host == "::"
    assert cfg.listen.port == 5454
    assert cfg.logging["level"] == "warn"


@pytest.mark.parametrize(
    "env",
    [
        {"DOCKDNS_UPSTREAM_TIMEOUT_MS": "0"},
        {"DOCKDNS_UPSTREAM_TIMEOUT_MS": "600000"},
        {"DOCKDNS_LISTEN_PORT": "70000"},
    ],
)
def test_out_of_range_values_rejected(env):
    with pytest.raises(ConfigError):
        load_config(environ={"MASTER_IP": "10.0.0.1", **env})


def test_unknown_keys_rejected(tmp_path):
    path = tmp_path / "c.yaml"
    path.write_text("master_ip: 10.0.0.1\nupstreams: []\n")
    with pytest.raises(ConfigError):
        load_config(str(path), environ={})


def test_empty_endpoint_list_rejected(tmp_path):
    path = tmp_path / "c.yaml"
    path.write_text("master_ip: 10.0.0.1\nupstream:\n  endpoints: ['  ']\n")
    with pytest.raises(ConfigError):
        load_config(str(path), environ={})


def test_read_config_file_errors(tmp_path):
    with pytest.raises(ConfigError):
        read_config_file(str(tmp_path / "missing.yaml"))
    bad = tmp_path / "list.yaml"
    bad.write_text("- a\n- b\n")
    with pytest.raises(ConfigError):
        read_config_file(str(bad))
    broken = tmp_path / "broken.yaml"
    broken.write_text("master_ip: [unclosed\n")
    with pytest.raises(ConfigError):
        read_config_file(str(broken))


def test_apply_environment_ignores_unrelated_keys():
    cfg = apply_environment({}, {"HOME": "/root", "LOCAL_DOCKER_NAMES": "dns"})
    assert cfg == {"local_docker_names": "dns"}
