"""Tests for the CLI entry point."""

import json
from unittest.mock import patch

import responses
import yaml
from botocore.exceptions import ProfileNotFound

from statewright.cli import main

DECLARATIONS = {
    "resources": [
        {"type": "network", "name": "main", "attributes": {"cidr_block": "10.0.0.0/16"}},
        {
            "type": "subnet",
            "name": "public",
            "count": 2,
            "attributes": {"network_id": "${network.main.id}", "cidr_block": "10.0.${count.index}.0/24"},
        },
    ],
    "outputs": {"network_id": "${network.main.id}"},
}


def _write(tmp_path, declarations=None, **overrides) -> str:
    (tmp_path / "infra.yaml").write_text(yaml.dump(declarations or DECLARATIONS))
    config = {
        "declarations": ["infra.yaml"],
        "state": {"backend": "file", "path": "state.json"},
        "provider": {
            "base_url": "http://cloud.test",
            "collections": {"network": "networks", "subnet": "subnets"},
            "force_new": {"network": ["cidr_block"]},
        },
        "logging": {"level": "WARNING"},
    }
    config.update(overrides)
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(config))
    return str(path)


class TestCLI:
    def test_validate_valid_config(self, tmp_path):
        assert main(["--validate", "-c", _write(tmp_path)]) == 0

    def test_validate_cycle(self, tmp_path):
        declarations = {"resources": [
            {"type": "network", "name": "a", "attributes": {"peer": "${network.b.id}"}},
            {"type": "network", "name": "b", "attributes": {"peer": "${network.a.id}"}},
        ]}
        assert main(["--validate", "-c", _write(tmp_path, declarations)]) == 1

    def test_validate_unregistered_type(self, tmp_path):
        declarations = {"resources": [{"type": "database", "name": "main"}]}
        assert main(["--validate", "-c", _write(tmp_path, declarations)]) == 1

    def test_invalid_config(self, tmp_path):
        assert main(["--validate", "-c", _write(tmp_path, reconcile={"mode": "yolo"})]) == 1

    def test_missing_config_file(self):
        assert main(["-c", "/nonexistent/config.yaml", "--validate"]) == 1

    def test_plan_prints_summary(self, tmp_path, capsys):
        result = main(["--plan", "-c", _write(tmp_path)])

        assert result == 0
        printed = json.loads(capsys.readouterr().out)
        assert printed["changes"]["create"] == 3
        assert printed["plan"] == [
            "network.main: create",
            "subnet.public[0]: create",
            "subnet.public[1]: create",
        ]
        assert not (tmp_path / "state.json").exists()

    @responses.activate
    def test_once_applies_and_prints_outputs(self, tmp_path, capsys):
        responses.add(responses.POST, "http://cloud.test/v1/networks", json={"id": "net-1"}, status=201)
        responses.add(responses.POST, "http://cloud.test/v1/subnets", json={"id": "sub-1"}, status=201)
        responses.add(responses.POST, "http://cloud.test/v1/subnets", json={"id": "sub-2"}, status=201)
        config = _write(tmp_path, reconcile={"mode": "apply-automatically"})

        assert main(["--once", "-c", config]) == 0

        assert json.loads(capsys.readouterr().out) == {"network_id": "net-1"}
        state = json.loads((tmp_path / "state.json").read_text())
        assert [r["address"] for r in state["resources"]] == ["network.main", "subnet.public[0]", "subnet.public[1]"]
        subnet_bodies = [json.loads(c.request.body) for c in responses.calls if c.request.url.endswith("/subnets")]
        assert all(body["network_id"] == "net-1" for body in subnet_bodies)

    @responses.activate
    def test_once_partial_failure_exit_code(self, tmp_path):
        responses.add(responses.POST, "http://cloud.test/v1/networks", body="quota exceeded", status=403)
        config = _write(tmp_path, reconcile={"mode": "apply-automatically"})

        assert main(["--once", "-c", config]) == 2

    @patch("statewright.state.s3_store.boto3.Session")
    def test_unavailable_state_backend_exit_code(self, MockSession, tmp_path):
        MockSession.side_effect = ProfileNotFound(profile="ghost")
        config = _write(tmp_path, state={"backend": "s3", "bucket": "infra-state", "credential_profile": "ghost"})

        assert main(["--once", "-c", config]) == 1
