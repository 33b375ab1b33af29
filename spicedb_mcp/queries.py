"""
Translation of loosely-typed tool arguments into SpiceDB API requests.

MCP clients send plain strings, often leaving optional arguments empty. This
module turns those arguments into well-formed `authzed` protobuf requests:

- Optional fields are only set on the request when they carry a value. An
  unset filter field and a field set to "" mean different things to SpiceDB,
  so empty strings are treated as "not given" and never sent.
- Bulk permission checks arrive as one semicolon-separated string and are
  parsed into `BulkCheckItem`s whose order is the contract for matching
  SpiceDB's answers back to the questions asked.
"""

from dataclasses import dataclass

from authzed.api.v1 import (
    CheckBulkPermissionsRequest,
    CheckBulkPermissionsRequestItem,
    Consistency,
    LookupResourcesRequest,
    LookupSubjectsRequest,
    ObjectReference,
    ReadRelationshipsRequest,
    RelationshipFilter,
    SubjectFilter,
    SubjectReference,
)

from spicedb_mcp.config import ConsistencyMode

RECORD_SEPARATOR = ";"
FIELD_SEPARATOR = ":"
BULK_CHECK_FORMAT = "resourceType:resourceId:permission:subjectType:subjectId[:subjectRelation]"


class BulkCheckFormatError(ValueError):
    """Raised when a bulk permission check string cannot be parsed."""


def _present(value: str | None) -> str | None:
    """Normalize an optional argument: blank strings count as absent."""
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class RelationshipQuery:
    """
    A relationship lookup with everything but the resource type optional.

    All set fields combine with a logical AND. Blank strings are normalized to
    None on construction, so `None` is the only representation of "not given".
    """

    resource_type: str
    resource_id: str | None = None
    relation: str | None = None
    subject_type: str | None = None
    subject_id: str | None = None
    subject_relation: str | None = None

    def __post_init__(self):
        for name in (
            "resource_id",
            "relation",
            "subject_type",
            "subject_id",
            "subject_relation",
        ):
            object.__setattr__(self, name, _present(getattr(self, name)))
        object.__setattr__(self, "resource_type", self.resource_type.strip())


@dataclass(frozen=True)
class BulkCheckItem:
    """One permission question of a bulk check."""

    resource_type: str
    resource_id: str
    permission: str
    subject_type: str
    subject_id: str
    subject_relation: str | None = None

    @property
    def resource_ref(self) -> str:
        return f"{self.resource_type}:{self.resource_id}"

    @property
    def subject_ref(self) -> str:
        ref = f"{self.subject_type}:{self.subject_id}"
        if self.subject_relation:
            ref += f"#{self.subject_relation}"
        return ref


def consistency_for(mode: ConsistencyMode) -> Consistency:
    if mode is ConsistencyMode.MINIMIZE_LATENCY:
        return Consistency(minimize_latency=True)
    return Consistency(fully_consistent=True)


# ---------------------------------------------------------------------------
# Filter Builder
# ---------------------------------------------------------------------------


def build_relationship_filter(query: RelationshipQuery) -> RelationshipFilter:
    """
    Build a RelationshipFilter containing only the fields the query sets.

    The subject filter is nested only when a subject type is given; within
    it, the subject id and the subject relation are each set independently.
    """
    relationship_filter = RelationshipFilter(resource_type=query.resource_type)

    if query.resource_id:
        relationship_filter.optional_resource_id = query.resource_id
    if query.relation:
        relationship_filter.optional_relation = query.relation

    if query.subject_type:
        subject_filter = SubjectFilter(subject_type=query.subject_type)
        if query.subject_id:
            subject_filter.optional_subject_id = query.subject_id
        if query.subject_relation:
            subject_filter.optional_relation.CopyFrom(
                SubjectFilter.RelationFilter(relation=query.subject_relation)
            )
        relationship_filter.optional_subject_filter.CopyFrom(subject_filter)

    return relationship_filter


def build_read_relationships_request(
    query: RelationshipQuery, consistency: ConsistencyMode
) -> ReadRelationshipsRequest:
    return ReadRelationshipsRequest(
        relationship_filter=build_relationship_filter(query),
        consistency=consistency_for(consistency),
    )


def build_lookup_resources_request(
    resource_object_type: str,
    permission: str,
    subject_type: str,
    subject_id: str,
    consistency: ConsistencyMode,
) -> LookupResourcesRequest:
    return LookupResourcesRequest(
        resource_object_type=resource_object_type,
        permission=permission,
        subject=SubjectReference(
            object=ObjectReference(object_type=subject_type, object_id=subject_id)
        ),
        consistency=consistency_for(consistency),
    )


def build_lookup_subjects_request(
    resource_type: str,
    resource_id: str,
    permission: str,
    subject_object_type: str,
    consistency: ConsistencyMode,
) -> LookupSubjectsRequest:
    return LookupSubjectsRequest(
        resource=ObjectReference(object_type=resource_type, object_id=resource_id),
        permission=permission,
        subject_object_type=subject_object_type,
        consistency=consistency_for(consistency),
    )


def describe_query(query: RelationshipQuery) -> str:
    """
    Render which filter fields a relationship query sets.

    Used verbatim by both the "Relationships for ..." header and the
    "No relationships found for ..." message. Examples:

        document
        document:doc1
        document:doc1, relation 'viewer', subject 'user:john'
        document, subject 'group:eng#member'
    """
    resource = query.resource_type
    if query.resource_id:
        resource += f":{query.resource_id}"
    parts = [resource]

    if query.relation:
        parts.append(f"relation '{query.relation}'")

    if query.subject_type:
        subject = query.subject_type
        if query.subject_id:
            subject += f":{query.subject_id}"
        if query.subject_relation:
            subject += f"#{query.subject_relation}"
        parts.append(f"subject '{subject}'")

    return ", ".join(parts)


# ---------------------------------------------------------------------------
# Bulk Check Parser
# ---------------------------------------------------------------------------


def parse_bulk_checks(permission_checks: str) -> list[BulkCheckItem]:
    """
    Parse 'resourceType:resourceId:permission:subjectType:subjectId[:subjectRelation]'
    records separated by semicolons.

    Records and fields are whitespace-trimmed and empty ones dropped. A single
    malformed record fails the whole batch. The returned list keeps the
    input order.

    Raises:
        BulkCheckFormatError: If no record is given or a record does not have
            5 or 6 fields.
    """
    records = [r.strip() for r in permission_checks.split(RECORD_SEPARATOR)]
    records = [r for r in records if r]
    if not records:
        raise BulkCheckFormatError("No valid permission checks provided")

    items = []
    for record in records:
        fields = [f.strip() for f in record.split(FIELD_SEPARATOR)]
        fields = [f for f in fields if f]
        if len(fields) not in (5, 6):
            raise BulkCheckFormatError(
                f"Invalid check format: '{record}'. Expected format: '{BULK_CHECK_FORMAT}'"
            )
        resource_type, resource_id, permission, subject_type, subject_id = fields[:5]
        items.append(
            BulkCheckItem(
                resource_type=resource_type,
                resource_id=resource_id,
                permission=permission,
                subject_type=subject_type,
                subject_id=subject_id,
                subject_relation=fields[5] if len(fields) == 6 else None,
            )
        )
    return items


def build_check_bulk_request(
    items: list[BulkCheckItem], consistency: ConsistencyMode
) -> CheckBulkPermissionsRequest:
    request = CheckBulkPermissionsRequest(consistency=consistency_for(consistency))
    for item in items:
        subject = SubjectReference(
            object=ObjectReference(object_type=item.subject_type, object_id=item.subject_id)
        )
        if item.subject_relation:
            subject.optional_relation = item.subject_relation
        request.items.append(
            CheckBulkPermissionsRequestItem(
                resource=ObjectReference(
                    object_type=item.resource_type, object_id=item.resource_id
                ),
                permission=item.permission,
                subject=subject,
            )
        )
    return request
