"""Tests for the state store backends."""

import json
from datetime import date
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ProfileNotFound

from conftest import decl
from statewright.config import ExecutorConfig, StateConfig
from statewright.diff import ChangeAction, Differ
from statewright.exceptions import StateStoreUnavailable, ValidationError
from statewright.executor import PlanExecutor
from statewright.graph import build_graph
from statewright.state import FileStateStore, MemoryStateStore, StateRecord, StateStore, build_state_store
from statewright.state.s3_store import S3StateStore


def _record(address="network.main", rtype="network", resource_id="net-1", **attributes):
    return StateRecord(
        address=address,
        type=rtype,
        id=resource_id,
        attributes=attributes or {"cidr_block": "10.0.0.0/16"},
    )


class TestStateRecord:
    def test_outputs_include_id(self):
        record = _record(cidr_block="10.0.0.0/16")
        assert record.outputs() == {"cidr_block": "10.0.0.0/16", "id": "net-1"}

    def test_dict_round_trip_keeps_dependencies(self):
        record = StateRecord("subnet.a", "subnet", "sub-1", {"x": 1}, dependencies=("network.main",))
        assert StateRecord.from_dict(record.to_dict()) == record

    def test_numeric_id_is_coerced(self):
        record = StateRecord.from_dict({"address": "a.b", "type": "a", "id": 42})
        assert record.id == "42"


class TestMemoryStateStore:
    def test_put_get_delete(self):
        store = MemoryStateStore()
        store.put("network.main", _record())
        assert store.get("network.main").id == "net-1"
        store.delete("network.main")
        assert store.get("network.main") is None

    def test_delete_missing_is_noop(self):
        MemoryStateStore().delete("network.ghost")

    def test_list_all_sorted(self):
        store = MemoryStateStore([_record("subnet.b", "subnet"), _record("network.a")])
        assert [r.address for r in store.list_all()] == ["network.a", "subnet.b"]

    def test_satisfies_protocol(self):
        assert isinstance(MemoryStateStore(), StateStore)


class TestFileStateStore:
    def test_missing_file_is_empty_state(self, tmp_path):
        assert FileStateStore(tmp_path / "state.json").list_all() == []

    def test_put_persists_immediately(self, tmp_path):
        path = tmp_path / "state.json"
        FileStateStore(path).put("network.main", _record())

        reopened = FileStateStore(path)
        assert reopened.get("network.main") == _record()

    def test_document_format(self, tmp_path):
        path = tmp_path / "state.json"
        store = FileStateStore(path)
        store.put("subnet.b", _record("subnet.b", "subnet", "sub-1"))
        store.put("network.a", _record("network.a"))

        document = json.loads(path.read_text())
        assert document["version"] == 1
        assert [r["address"] for r in document["resources"]] == ["network.a", "subnet.b"]

    def test_delete_persists(self, tmp_path):
        path = tmp_path / "state.json"
        store = FileStateStore(path)
        store.put("network.main", _record())
        store.delete("network.main")
        assert FileStateStore(path).list_all() == []

    def test_no_temp_files_left_behind(self, tmp_path):
        store = FileStateStore(tmp_path / "state.json")
        for i in range(3):
            store.put(f"network.n{i}", _record(f"network.n{i}"))
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "state.json"
        FileStateStore(path).put("network.main", _record())
        assert path.exists()

    def test_malformed_json_fails_closed(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        with pytest.raises(StateStoreUnavailable):
            FileStateStore(path).list_all()

    def test_malformed_record_fails_closed(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"version": 1, "resources": [{"address": "network.main"}]}))
        with pytest.raises(StateStoreUnavailable, match="malformed"):
            FileStateStore(path).get("network.main")

    def test_failed_write_leaves_cache_untouched(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = FileStateStore(blocker / "state.json")
        with pytest.raises(StateStoreUnavailable):
            store.put("network.main", _record())
        assert store.get("network.main") is None

    def test_unserializable_value_fails_loudly(self, tmp_path):
        path = tmp_path / "state.json"
        store = FileStateStore(path)
        with pytest.raises(ValidationError, match="JSON"):
            store.put("cluster.main", _record("cluster.main", "cluster", "c-1", expires=date(2025, 1, 1)))
        assert store.get("cluster.main") is None
        assert not path.exists()

    def test_applied_state_rediffs_as_noop(self, tmp_path, registry):
        path = tmp_path / "state.json"
        graph = build_graph([decl("cluster", "main", expires="2025-01-01", capacity=3, ratio=0.5, tags={"env": "prod"})])
        store = FileStateStore(path)
        result = PlanExecutor(registry, store, ExecutorConfig()).apply(Differ(registry).diff(graph, store), graph)
        assert result.ok

        change = Differ(registry).diff(graph, FileStateStore(path))["cluster.main"]
        assert change.action is ChangeAction.NOOP

    def test_reload_rereads_file(self, tmp_path):
        path = tmp_path / "state.json"
        store = FileStateStore(path)
        assert store.list_all() == []
        FileStateStore(path).put("network.main", _record())
        assert store.list_all() == []
        store.reload()
        assert [r.address for r in store.list_all()] == ["network.main"]


class TestS3StateStore:
    CONFIG = StateConfig(backend="s3", bucket="infra-state", key="prod/state.json", region="eu-west-1")

    def _store(self, MockSession):
        s3 = MagicMock()
        MockSession.return_value.client.return_value = s3
        return S3StateStore(self.CONFIG), s3

    @patch("statewright.state.s3_store.boto3.Session")
    def test_session_uses_region(self, MockSession):
        self._store(MockSession)
        MockSession.assert_called_once_with(region_name="eu-west-1")
        MockSession.return_value.client.assert_called_once_with("s3")

    @patch("statewright.state.s3_store.boto3.Session")
    def test_missing_object_is_empty_state(self, MockSession):
        store, s3 = self._store(MockSession)
        s3.get_object.side_effect = ClientError({"Error": {"Code": "NoSuchKey"}}, "GetObject")
        assert store.list_all() == []

    @patch("statewright.state.s3_store.boto3.Session")
    def test_reads_document(self, MockSession):
        store, s3 = self._store(MockSession)
        body = MagicMock()
        body.read.return_value = json.dumps({"version": 1, "resources": [_record().to_dict()]}).encode()
        s3.get_object.return_value = {"Body": body}

        assert store.get("network.main") == _record()
        s3.get_object.assert_called_once_with(Bucket="infra-state", Key="prod/state.json")

    @patch("statewright.state.s3_store.boto3.Session")
    def test_put_writes_whole_document(self, MockSession):
        store, s3 = self._store(MockSession)
        s3.get_object.side_effect = ClientError({"Error": {"Code": "NoSuchKey"}}, "GetObject")

        store.put("network.main", _record())

        kwargs = s3.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "infra-state"
        assert kwargs["Key"] == "prod/state.json"
        assert kwargs["ContentType"] == "application/json"
        document = json.loads(kwargs["Body"])
        assert document["resources"][0]["id"] == "net-1"

    @patch("statewright.state.s3_store.boto3.Session")
    def test_access_denied_fails_closed(self, MockSession):
        store, s3 = self._store(MockSession)
        s3.get_object.side_effect = ClientError({"Error": {"Code": "AccessDenied"}}, "GetObject")
        with pytest.raises(StateStoreUnavailable, match="infra-state"):
            store.list_all()

    @patch("statewright.state.s3_store.boto3.Session")
    def test_write_error_fails_closed(self, MockSession):
        store, s3 = self._store(MockSession)
        s3.get_object.side_effect = ClientError({"Error": {"Code": "NoSuchKey"}}, "GetObject")
        s3.put_object.side_effect = EndpointConnectionError(endpoint_url="https://s3.eu-west-1.amazonaws.com")
        with pytest.raises(StateStoreUnavailable):
            store.put("network.main", _record())
        assert store.get("network.main") is None

    @patch("statewright.state.s3_store.boto3.Session")
    def test_unknown_profile_fails_closed(self, MockSession):
        MockSession.side_effect = ProfileNotFound(profile="ghost")
        with pytest.raises(StateStoreUnavailable, match="ghost"):
            S3StateStore(StateConfig(backend="s3", bucket="infra-state", credential_profile="ghost"))


class TestBuildStateStore:
    def test_memory(self):
        assert isinstance(build_state_store(StateConfig(backend="memory")), MemoryStateStore)

    def test_file(self, tmp_path):
        store = build_state_store(StateConfig(backend="file", path=str(tmp_path / "s.json")))
        assert isinstance(store, FileStateStore)
        assert store.path == tmp_path / "s.json"

    @patch("statewright.state.s3_store.boto3.Session")
    def test_s3(self, MockSession):
        assert isinstance(build_state_store(TestS3StateStore.CONFIG), S3StateStore)
