"""
Unit tests for request building and bulk check parsing (spicedb_mcp/queries.py).

The filter tests inspect `ListFields()`, which only reports populated fields,
to prove that arguments left out never reach SpiceDB as empty strings.
"""

import pytest

from spicedb_mcp.config import ConsistencyMode
from spicedb_mcp.queries import (
    BulkCheckFormatError,
    BulkCheckItem,
    RelationshipQuery,
    build_check_bulk_request,
    build_lookup_resources_request,
    build_lookup_subjects_request,
    build_relationship_filter,
    consistency_for,
    describe_query,
    parse_bulk_checks,
)


def populated(message) -> list[str]:
    return [field.name for field, _ in message.ListFields()]


class TestRelationshipQuery:
    def test_blank_optional_fields_become_none(self):
        query = RelationshipQuery("document", resource_id="", relation="  ", subject_type=None)

        assert query.resource_id is None
        assert query.relation is None
        assert query.subject_type is None

    def test_values_are_trimmed(self):
        query = RelationshipQuery(" document ", resource_id=" doc1 ")

        assert query.resource_type == "document"
        assert query.resource_id == "doc1"


class TestBuildRelationshipFilter:
    def test_only_resource_type(self):
        relationship_filter = build_relationship_filter(RelationshipQuery("document"))

        assert populated(relationship_filter) == ["resource_type"]
        assert relationship_filter.resource_type == "document"

    def test_empty_strings_are_not_sent(self):
        query = RelationshipQuery(
            "document",
            resource_id="",
            relation="",
            subject_type="",
            subject_id="",
            subject_relation="",
        )

        assert populated(build_relationship_filter(query)) == ["resource_type"]

    def test_resource_id_and_relation(self):
        relationship_filter = build_relationship_filter(
            RelationshipQuery("document", resource_id="doc1", relation="viewer")
        )

        assert relationship_filter.optional_resource_id == "doc1"
        assert relationship_filter.optional_relation == "viewer"
        assert not relationship_filter.HasField("optional_subject_filter")

    def test_subject_type_nests_subject_filter(self):
        relationship_filter = build_relationship_filter(
            RelationshipQuery("document", subject_type="user")
        )

        subject_filter = relationship_filter.optional_subject_filter
        assert relationship_filter.HasField("optional_subject_filter")
        assert populated(subject_filter) == ["subject_type"]
        assert subject_filter.subject_type == "user"

    def test_subject_id_and_relation_are_independent(self):
        with_id = build_relationship_filter(
            RelationshipQuery("document", subject_type="user", subject_id="john")
        ).optional_subject_filter
        with_relation = build_relationship_filter(
            RelationshipQuery("document", subject_type="group", subject_relation="member")
        ).optional_subject_filter

        assert with_id.optional_subject_id == "john"
        assert not with_id.HasField("optional_relation")
        assert with_relation.optional_subject_id == ""
        assert with_relation.optional_relation.relation == "member"

    def test_subject_fields_without_subject_type_are_dropped(self):
        relationship_filter = build_relationship_filter(
            RelationshipQuery("document", subject_id="john", subject_relation="member")
        )

        assert not relationship_filter.HasField("optional_subject_filter")


class TestDescribeQuery:
    def test_resource_type_only(self):
        assert describe_query(RelationshipQuery("document")) == "document"

    def test_with_resource_id(self):
        assert describe_query(RelationshipQuery("document", resource_id="doc1")) == "document:doc1"

    def test_all_fields(self):
        query = RelationshipQuery(
            "document",
            resource_id="doc1",
            relation="viewer",
            subject_type="group",
            subject_id="eng",
            subject_relation="member",
        )

        assert describe_query(query) == (
            "document:doc1, relation 'viewer', subject 'group:eng#member'"
        )

    def test_subject_type_without_id(self):
        query = RelationshipQuery("project", subject_type="user")

        assert describe_query(query) == "project, subject 'user'"


class TestParseBulkChecks:
    def test_two_checks_in_order(self):
        items = parse_bulk_checks("document:doc1:view:user:john;folder:folder1:read:user:jane")

        assert items == [
            BulkCheckItem("document", "doc1", "view", "user", "john"),
            BulkCheckItem("folder", "folder1", "read", "user", "jane"),
        ]

    def test_optional_subject_relation(self):
        (item,) = parse_bulk_checks("document:doc1:view:group:eng:member")

        assert item.subject_relation == "member"
        assert item.subject_ref == "group:eng#member"

    def test_missing_subject_relation_is_none(self):
        (item,) = parse_bulk_checks("document:doc1:view:user:john")

        assert item.subject_relation is None
        assert item.subject_ref == "user:john"
        assert item.resource_ref == "document:doc1"

    def test_whitespace_and_empty_records_are_ignored(self):
        items = parse_bulk_checks(" document : doc1 : view : user : john ;; ; ")

        assert items == [BulkCheckItem("document", "doc1", "view", "user", "john")]

    def test_short_record_fails_whole_batch(self):
        with pytest.raises(BulkCheckFormatError, match="'document:doc1:view'"):
            parse_bulk_checks("folder:folder1:read:user:jane;document:doc1:view")

    def test_too_many_fields_fails(self):
        with pytest.raises(BulkCheckFormatError, match="Invalid check format"):
            parse_bulk_checks("document:doc1:view:group:eng:member:extra")

    @pytest.mark.parametrize("text", ["", "   ", ";;"])
    def test_no_checks_fails(self, text):
        with pytest.raises(BulkCheckFormatError, match="No valid permission checks provided"):
            parse_bulk_checks(text)


class TestRequestBuilders:
    def test_consistency_modes(self):
        assert consistency_for(ConsistencyMode.FULL).fully_consistent
        assert consistency_for(ConsistencyMode.MINIMIZE_LATENCY).minimize_latency

    def test_bulk_request_keeps_order_and_relation(self):
        items = parse_bulk_checks("document:doc1:view:user:john;folder:f1:read:group:eng:member")

        request = build_check_bulk_request(items, ConsistencyMode.FULL)

        assert [i.resource.object_id for i in request.items] == ["doc1", "f1"]
        assert request.items[0].subject.optional_relation == ""
        assert request.items[1].subject.optional_relation == "member"
        assert request.consistency.fully_consistent

    def test_lookup_resources_request(self):
        request = build_lookup_resources_request(
            "project", "admin", "user", "CTO", ConsistencyMode.MINIMIZE_LATENCY
        )

        assert request.resource_object_type == "project"
        assert request.permission == "admin"
        assert request.subject.object.object_type == "user"
        assert request.subject.object.object_id == "CTO"
        assert request.consistency.minimize_latency

    def test_lookup_subjects_request(self):
        request = build_lookup_subjects_request(
            "document", "a", "read", "user", ConsistencyMode.FULL
        )

        assert request.resource.object_type == "document"
        assert request.resource.object_id == "a"
        assert request.subject_object_type == "user"
        assert request.consistency.fully_consistent
