"""Tests for configuration loading."""

import json

import pytest
from pydantic import ValidationError

from harbormaster.core.config import load_config


class TestLoadConfig:
    """Tests for load_config."""

    def test_yaml(self, tmp_path):
        """Test loading a YAML project file."""
        path = tmp_path / "harbormaster.yaml"
        path.write_text(
            """\
name: web
engine:
  binary: podman
  retry: 3
image:
  organization: acme
  repository: web
  variant: alpine
container:
  ports:
    - "8080:80"
  env:
    WORKERS: 2
  wait_for: "listening on"
dispose: true
"""
        )
        config = load_config(path)

        assert config.name == "web"
        assert config.engine.binary == "podman"
        assert config.engine.retry == 3
        assert config.image.organization == "acme"
        assert config.container.ports[0].render() == "8080:80"
        assert config.container.env == {"WORKERS": "2"}
        assert config.container.wait_for == "listening on"
        assert config.dispose is True

    def test_json(self, tmp_path):
        path = tmp_path / "harbormaster.json"
        path.write_text(json.dumps({"name": "api", "hub": {"username": "u", "password": "p"}}))
        config = load_config(path)
        assert config.name == "api"
        assert config.hub.username == "u"

    def test_empty_yaml_uses_defaults(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert load_config(path).engine.binary == "docker"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("name = 'x'")
        with pytest.raises(ValueError, match="Unsupported config format"):
            load_config(path)

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("image:\n  variant: ubuntu\n")
        with pytest.raises(ValidationError):
            load_config(path)
