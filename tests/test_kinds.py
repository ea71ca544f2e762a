"""Unit tests for the kinds package - Typed resource kinds and registry."""

from unittest.mock import MagicMock, patch

import pytest

from errors import ValidationError
from kinds.base import ResourceKind
from kinds.batch_job_queue import ComputeEnvironmentOrder, JobQueue
from kinds.qbusiness import parse_composite_id
from kinds.qbusiness_index import DocumentAttributeConfiguration, Index
from kinds.qbusiness_retriever import Retriever
from kinds.qbusiness_user import User, UserAlias
from kinds.rds_snapshot import DBSnapshot
from kinds.registry import ENTRY_POINT_GROUP, KindRegistry, build_registry
from resources import LifecycleStatus

APPLICATION_ID = "a1b2c3d4-0000-1111-2222-333344445555"
INDEX_ID = "e5f6a7b8-0000-1111-2222-333344445555"


def job_queue_fields(**overrides):
    fields = {
        "name": "tf-test-queue",
        "priority": 1,
        "state": "ENABLED",
        "compute_environment_order": [
            {"compute_environment": "arn:aws:batch:ce/one", "order": 0},
            {"compute_environment": "arn:aws:batch:ce/two", "order": 1},
        ],
    }
    fields.update(overrides)
    return fields


class TestJobQueue:
    """Tests for the batch_job_queue kind."""

    def test_from_fields_round_trip(self):
        queue = JobQueue.from_fields(job_queue_fields())

        assert queue.compute_environment_order[1] == ComputeEnvironmentOrder(
            compute_environment="arn:aws:batch:ce/two", order=1
        )
        assert queue.to_fields() == {
            **job_queue_fields(),
            "scheduling_policy_arn": None,
        }

    def test_from_fields_ignores_computed_attributes(self):
        queue = JobQueue.from_fields(
            job_queue_fields(arn="arn:aws:batch:queue/q", status_reason="ok")
        )
        assert "arn" not in queue.to_fields()

    def test_to_spec_carries_field_rules(self):
        spec = JobQueue.from_fields(job_queue_fields()).to_spec()

        assert spec.kind == "batch_job_queue"
        assert spec.immutable_fields == frozenset({"name", "scheduling_policy_arn"})
        assert spec.unordered_fields == frozenset({"compute_environment_order"})

    def test_validate_ok(self):
        JobQueue.validate(job_queue_fields())

    @pytest.mark.parametrize(
        "overrides",
        [
            {"state": "PAUSED"},
            {"priority": 1001},
            {"name": "-bad"},
            {"compute_environment_order": []},
            {
                "compute_environment_order": [
                    {"compute_environment": f"ce-{i}", "order": i} for i in range(4)
                ]
            },
        ],
    )
    def test_validate_rejects(self, overrides):
        with pytest.raises(ValidationError, match="Invalid batch_job_queue spec"):
            JobQueue.validate(job_queue_fields(**overrides))

    def test_validate_missing_required(self):
        fields = job_queue_fields()
        del fields["priority"]
        with pytest.raises(ValidationError, match="'priority' is a required"):
            JobQueue.validate(fields)

    def test_status_map(self):
        assert JobQueue.lifecycle_status("CREATING") == LifecycleStatus.PENDING
        assert JobQueue.lifecycle_status("VALID") == LifecycleStatus.AVAILABLE
        assert JobQueue.lifecycle_status("INVALID") == LifecycleStatus.FAILED
        assert JobQueue.lifecycle_status("DELETED") == LifecycleStatus.DELETED
        assert JobQueue.lifecycle_status(None) == LifecycleStatus.UNKNOWN
        assert JobQueue.lifecycle_status("MYSTERY") == LifecycleStatus.UNKNOWN

    def test_must_be_disabled_before_delete(self):
        assert JobQueue.pre_delete_fields == {"state": "DISABLED"}
        assert DBSnapshot.pre_delete_fields == {}


class TestDBSnapshot:
    """Tests for the rds_snapshot kind."""

    def test_to_fields_sorts_shared_accounts(self):
        snapshot = DBSnapshot(
            db_snapshot_identifier="snap-1",
            db_instance_identifier="db-1",
            shared_accounts=["222222222222", "111111111111"],
        )
        assert snapshot.to_fields()["shared_accounts"] == [
            "111111111111",
            "222222222222",
        ]

    def test_spec_from_fields_defaults(self):
        spec = DBSnapshot.spec_from_fields(
            {"db_snapshot_identifier": "snap-1", "db_instance_identifier": "db-1"}
        )
        assert spec.fields["shared_accounts"] == []
        assert "shared_accounts" in spec.unordered_fields

    def test_validate_rejects_bad_account(self):
        with pytest.raises(ValidationError):
            DBSnapshot.validate(
                {
                    "db_snapshot_identifier": "snap-1",
                    "db_instance_identifier": "db-1",
                    "shared_accounts": ["12345"],
                }
            )

    def test_validate_accepts_all(self):
        DBSnapshot.validate(
            {
                "db_snapshot_identifier": "snap-1",
                "db_instance_identifier": "db-1",
                "shared_accounts": ["all"],
            }
        )

    def test_kind_metadata(self):
        assert DBSnapshot.synchronous_update is True
        assert DBSnapshot.deferred_fields == frozenset({"shared_accounts"})
        assert DBSnapshot.create_timeout == 1200.0
        assert DBSnapshot.lifecycle_status("creating") == LifecycleStatus.PENDING

    @pytest.mark.parametrize("raw_status", ["failed", "incompatible-restore"])
    def test_failure_statuses(self, raw_status):
        assert DBSnapshot.lifecycle_status(raw_status) == LifecycleStatus.FAILED


class TestRetriever:
    """Tests for the qbusiness_retriever kind."""

    def fields(self, **overrides):
        fields = {
            "application_id": APPLICATION_ID,
            "display_name": "my-retriever",
            "native_index_configuration": {"index_id": INDEX_ID},
        }
        fields.update(overrides)
        return fields

    def test_round_trip_native(self):
        retriever = Retriever.from_fields(self.fields())

        assert retriever.retriever_type == "NATIVE_INDEX"
        assert retriever.to_fields() == {
            **self.fields(),
            "iam_service_role_arn": None,
        }

    def test_round_trip_kendra(self):
        fields = self.fields(
            kendra_index_configuration={"index_id": INDEX_ID},
            iam_service_role_arn="arn:aws:iam::123456789012:role/qbusiness",
        )
        del fields["native_index_configuration"]

        retriever = Retriever.from_fields(fields)

        assert retriever.retriever_type == "KENDRA_INDEX"
        assert retriever.to_fields() == fields

    def test_validate_requires_exactly_one_index(self):
        fields = self.fields(kendra_index_configuration={"index_id": INDEX_ID})
        with pytest.raises(ValidationError):
            Retriever.validate(fields)

        fields = self.fields()
        del fields["native_index_configuration"]
        with pytest.raises(ValidationError):
            Retriever.validate(fields)

    def test_validate_application_id_pattern(self):
        with pytest.raises(ValidationError, match="application_id"):
            Retriever.validate(self.fields(application_id="short"))

    def test_validate_display_name_pattern(self):
        with pytest.raises(ValidationError, match="display_name"):
            Retriever.validate(self.fields(display_name="bad name!"))

    def test_parse_composite_id(self):
        assert parse_composite_id("app/ret", "retriever") == ("app", "ret")

    @pytest.mark.parametrize("handle_id", ["app", "app/", "/ret", "a/b/c"])
    def test_parse_composite_id_invalid(self, handle_id):
        with pytest.raises(ValueError, match="invalid retriever ID"):
            parse_composite_id(handle_id, "retriever")


class TestIndex:
    """Tests for the qbusiness_index kind."""

    def fields(self, **overrides):
        fields = {
            "application_id": APPLICATION_ID,
            "display_name": "docs-index",
        }
        fields.update(overrides)
        return fields

    def test_round_trip_minimal(self):
        index = Index.from_fields(self.fields())

        assert index.capacity_units is None
        assert index.to_fields() == self.fields()

    def test_round_trip_full(self):
        fields = self.fields(
            description="Product documentation",
            capacity_configuration={"units": 2},
            document_attribute_configurations=[
                {"name": "author", "type": "STRING", "search": "ENABLED"},
                {"name": "published", "type": "DATE", "search": "DISABLED"},
            ],
        )

        index = Index.from_fields(fields)

        assert index.capacity_units == 2
        assert index.document_attribute_configurations[1] == (
            DocumentAttributeConfiguration(
                name="published", type="DATE", search="DISABLED"
            )
        )
        assert index.to_fields() == fields

    def test_search_defaults_to_enabled(self):
        index = Index.from_fields(
            self.fields(
                document_attribute_configurations=[{"name": "author", "type": "STRING"}]
            )
        )
        assert index.to_fields()["document_attribute_configurations"] == [
            {"name": "author", "type": "STRING", "search": "ENABLED"}
        ]

    def test_attribute_configurations_are_deferred(self):
        assert Index.deferred_fields == frozenset(
            {"document_attribute_configurations"}
        )
        assert "document_attribute_configurations" in Index.unordered_fields
        assert Index.immutable_fields == frozenset({"application_id"})

    @pytest.mark.parametrize(
        "overrides",
        [
            {"application_id": "short"},
            {"display_name": ""},
            {"capacity_configuration": {"units": 0}},
            {"document_attribute_configurations": [{"name": "a", "type": "BLOB"}]},
        ],
    )
    def test_validate_rejects(self, overrides):
        with pytest.raises(ValidationError, match="Invalid qbusiness_index spec"):
            Index.validate(self.fields(**overrides))

    def test_status_map(self):
        assert Index.lifecycle_status("CREATING") == LifecycleStatus.PENDING
        assert Index.lifecycle_status("ACTIVE") == LifecycleStatus.AVAILABLE
        assert Index.lifecycle_status("UPDATING") == LifecycleStatus.UPDATING
        assert Index.lifecycle_status("DELETING") == LifecycleStatus.DELETING
        assert Index.lifecycle_status("FAILED") == LifecycleStatus.FAILED


class TestUser:
    """Tests for the qbusiness_user kind."""

    def fields(self, **overrides):
        fields = {
            "application_id": APPLICATION_ID,
            "user_id": "jane@example.com",
            "user_aliases": [
                {"user_id": "jane", "datasource_id": None, "index_id": INDEX_ID},
            ],
        }
        fields.update(overrides)
        return fields

    def test_round_trip(self):
        user = User.from_fields(self.fields())

        assert user.user_aliases == [UserAlias(user_id="jane", index_id=INDEX_ID)]
        assert user.to_fields() == self.fields()

    def test_aliases_default_empty(self):
        user = User.from_fields(
            {"application_id": APPLICATION_ID, "user_id": "jane@example.com"}
        )
        assert user.to_fields()["user_aliases"] == []

    def test_field_rules(self):
        spec = User.from_fields(self.fields()).to_spec()

        assert spec.immutable_fields == frozenset({"application_id", "user_id"})
        assert spec.unordered_fields == frozenset({"user_aliases"})
        assert User.synchronous_update is True

    @pytest.mark.parametrize(
        "overrides",
        [
            {"user_id": ""},
            {"user_id": "team/jane"},
            {"user_aliases": [{"index_id": INDEX_ID}]},
            {"user_aliases": [{"user_id": "jane", "index_id": "bad"}]},
        ],
    )
    def test_validate_rejects(self, overrides):
        with pytest.raises(ValidationError, match="Invalid qbusiness_user spec"):
            User.validate(self.fields(**overrides))

    def test_status_map(self):
        assert User.lifecycle_status("ACTIVE") == LifecycleStatus.AVAILABLE


class TestKindRegistry:
    """Tests for KindRegistry."""

    def test_register_and_get(self):
        registry = KindRegistry()
        registry.register_kind(JobQueue)

        assert registry.get_kind("batch_job_queue") is JobQueue
        assert registry.has_kind("batch_job_queue")
        assert registry.list_kinds() == ["batch_job_queue"]

    def test_get_unknown_kind(self):
        registry = KindRegistry()
        registry.register_kind(JobQueue)

        with pytest.raises(ValidationError) as exc_info:
            registry.get_kind("widget")

        assert "Available kinds: batch_job_queue" in exc_info.value.message

    def test_register_invalid_schema(self):
        class BrokenKind(ResourceKind):
            kind = "broken"
            schema = {"type": "not-a-type"}

            def to_fields(self):
                return {}

            @classmethod
            def from_fields(cls, fields):
                return cls()

        registry = KindRegistry()
        with pytest.raises(ValueError, match="Kind 'broken' has an invalid schema"):
            registry.register_kind(BrokenKind)
        assert not registry.has_kind("broken")

    def test_register_overwrites(self):
        registry = KindRegistry()
        registry.register_kind(JobQueue)
        registry.register_kind(JobQueue)
        assert registry.list_kinds() == ["batch_job_queue"]

    def test_describe_kinds(self):
        registry = KindRegistry()
        registry.register_kind(DBSnapshot)

        (summary,) = registry.describe_kinds()

        assert summary == {
            "kind": "rds_snapshot",
            "required": ["db_snapshot_identifier", "db_instance_identifier"],
            "immutable": ["db_instance_identifier", "db_snapshot_identifier"],
            "unordered": ["shared_accounts"],
            "create_timeout": 1200.0,
            "delete_timeout": None,
        }

    def test_build_registry_builtins(self):
        registry = build_registry(discover=False)
        assert registry.list_kinds() == [
            "batch_job_queue",
            "qbusiness_index",
            "qbusiness_retriever",
            "qbusiness_user",
            "rds_snapshot",
        ]

    def test_discover_entry_points(self):
        good = MagicMock()
        good.name = "snapshot"
        good.load.return_value = DBSnapshot
        bad = MagicMock()
        bad.name = "missing"
        bad.load.side_effect = ImportError("no module")

        registry = KindRegistry()
        with patch(
            "kinds.registry.entry_points", return_value=[good, bad]
        ) as mock_entry_points:
            registry.discover()

        mock_entry_points.assert_called_once_with(group=ENTRY_POINT_GROUP)
        assert registry.list_kinds() == ["rds_snapshot"]
