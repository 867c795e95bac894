import pytest

from iidattestor.config import (
    Settings,
    load_settings,
    parse_plugin_config,
    read_trusted_root,
)
from iidattestor.errors import ConfigParseFailed

_ENV_VARS = (
    "IID_CONFIG_PATH",
    "IID_TRUST_DOMAIN",
    "IID_CA_CERT_PATH",
    "IID_VERSION",
    "IID_AWS_CONNECT_TIMEOUT_S",
    "IID_AWS_READ_TIMEOUT_S",
    "IID_LOG_LEVEL",
    "IID_PROMETHEUS_ENABLED",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    s = load_settings()
    assert s.config_origin == "defaults"
    assert s.trust_domain == ""
    assert s.ca_cert_path == ""
    assert s.aws_connect_timeout_s == 5.0
    assert s.prometheus_enabled is True


def test_yaml_overlay_then_env(monkeypatch, tmp_path):
    path = tmp_path / "iid.yaml"
    path.write_text("trust_domain: yaml.org\naws_read_timeout_s: 20\nlog_level: debug\n")
    monkeypatch.setenv("IID_CONFIG_PATH", str(path))
    s = load_settings()
    assert s.config_origin == "yaml"
    assert s.trust_domain == "yaml.org"
    assert s.aws_read_timeout_s == 20.0
    assert s.log_level == "DEBUG"

    monkeypatch.setenv("IID_TRUST_DOMAIN", " env.org ")
    monkeypatch.setenv("IID_PROMETHEUS_ENABLED", "off")
    s = load_settings()
    assert s.trust_domain == "env.org"
    assert s.prometheus_enabled is False


def test_yaml_typo_rejected(monkeypatch, tmp_path):
    path = tmp_path / "iid.yaml"
    path.write_text("trust_domian: oops.org\n")
    monkeypatch.setenv("IID_CONFIG_PATH", str(path))
    with pytest.raises(Exception):
        load_settings()


def test_missing_or_broken_yaml_falls_back_to_defaults(monkeypatch, tmp_path):
    monkeypatch.setenv("IID_CONFIG_PATH", str(tmp_path / "absent.yaml"))
    assert load_settings().config_origin == "defaults"

    path = tmp_path / "broken.yaml"
    path.write_text("trust_domain: [unclosed\n")
    monkeypatch.setenv("IID_CONFIG_PATH", str(path))
    assert load_settings().config_origin == "defaults"


@pytest.mark.parametrize("raw, expected", [("2.5", 2.5), ("0", 5.0), ("1000", 5.0), ("abc", 5.0)])
def test_connect_timeout_bounds(monkeypatch, raw, expected):
    monkeypatch.setenv("IID_AWS_CONNECT_TIMEOUT_S", raw)
    assert load_settings().aws_connect_timeout_s == expected


def test_read_trusted_root(tmp_path, root_cert_pem):
    assert read_trusted_root(Settings()) is None

    path = tmp_path / "root.pem"
    path.write_bytes(root_cert_pem)
    assert read_trusted_root(Settings(ca_cert_path=str(path))) == root_cert_pem

    with pytest.raises(ConfigParseFailed):
        read_trusted_root(Settings(ca_cert_path=str(tmp_path / "nope.pem")))


def test_parse_plugin_config():
    assert parse_plugin_config("trust_domain: example.org\n").trust_domain == "example.org"
    assert parse_plugin_config('{"trust_domain": "json.org", "extra": 1}').trust_domain == "json.org"


def test_parse_plugin_config_steps():
    with pytest.raises(ConfigParseFailed) as ei:
        parse_plugin_config("trust_domain: [")
    assert ei.value.step == "parsing the attestor configuration"

    with pytest.raises(ConfigParseFailed) as ei:
        parse_plugin_config("trust_domain: 5\n")
    assert ei.value.step == "decoding the attestor configuration"

