from __future__ import annotations

from pathlib import Path

from campuseav_core.eav.catalog import AttributeSpec
from campuseav_core.eav.service import EavService
from campuseav_core.errors import SchemaError
from campuseav_core.jobs.migration import FieldMapping, GroupMapping, MigrationPlan
from campuseav_core.legacy import SqliteBlobSource

_AWARD_ATTRIBUTES = (
    AttributeSpec(
        name="award_group_id",
        value_kind="string",
        display_name="Award Group ID",
        description="Groups related award attributes together (for multi-valued awards)",
        required=True,
        multi_valued=True,
        sort_order=0,
    ),
    AttributeSpec(
        name="award_title",
        value_kind="string",
        display_name="Award Title",
        description="Title/name of the award received",
        required=True,
        multi_valued=True,
        sort_order=1,
    ),
    AttributeSpec(
        name="award_year",
        value_kind="integer",
        display_name="Award Year",
        description="Year the award was received",
        multi_valued=True,
        validation_rules={"min": 1900, "max": 2100},
        sort_order=2,
    ),
    AttributeSpec(
        name="award_organization",
        value_kind="string",
        display_name="Awarding Organization",
        description="Organization that granted the award",
        multi_valued=True,
        sort_order=3,
    ),
    AttributeSpec(
        name="award_description",
        value_kind="text",
        display_name="Award Description",
        description="Detailed description of the award",
        multi_valued=True,
        sort_order=4,
    ),
    AttributeSpec(
        name="award_category",
        value_kind="string",
        display_name="Award Category",
        description="Category of the award (e.g., teaching, research, service)",
        multi_valued=True,
        sort_order=5,
    ),
)

INSTRUCTOR_AWARDS = MigrationPlan(
    name="instructor_awards",
    version="1.0.0",
    entity_type="Instructor",
    table_ref="instructors",
    description="Instructor entity for EAV attribute storage",
    attributes=_AWARD_ATTRIBUTES,
    attribute_prefixes=("award_",),
    group=GroupMapping(
        group_attribute="award_group_id",
        fields=(
            FieldMapping("award_title", ("title", "name", "awardTitle")),
            FieldMapping("award_year", ("year", "awardYear")),
            FieldMapping("award_organization", ("organization", "grantedBy", "issuingBody")),
            FieldMapping("award_description", ("description", "details")),
            FieldMapping("award_category", ("category", "type")),
        ),
    ),
    legacy_table="instructors",
    legacy_blob_column="awards",
    legacy_note="Instructor awards and recognitions",
)

_EQUIPMENT_ATTRIBUTES = (
    AttributeSpec(
        name="equipment_group_id",
        value_kind="string",
        display_name="Equipment Group ID",
        description="Groups related equipment attributes together (for multi-valued equipment)",
        required=True,
        multi_valued=True,
        sort_order=0,
    ),
    AttributeSpec(
        name="equipment_name",
        value_kind="string",
        display_name="Equipment Name",
        description="Name/type of the equipment",
        required=True,
        multi_valued=True,
        sort_order=1,
    ),
    AttributeSpec(
        name="equipment_quantity",
        value_kind="integer",
        display_name="Quantity",
        description="Number of units available",
        multi_valued=True,
        validation_rules={"min": 0, "max": 10000},
        sort_order=2,
    ),
    AttributeSpec(
        name="equipment_condition",
        value_kind="string",
        display_name="Condition",
        description="Current condition of the equipment",
        multi_valued=True,
        validation_rules={"enum": ["Excellent", "Good", "Fair", "Poor"]},
        sort_order=3,
    ),
    AttributeSpec(
        name="equipment_notes",
        value_kind="text",
        display_name="Notes",
        description="Additional notes about the equipment",
        multi_valued=True,
        sort_order=4,
    ),
)

FACILITY_EQUIPMENT = MigrationPlan(
    name="facility_equipment",
    version="1.0.0",
    entity_type="Facility",
    table_ref="facilities",
    description="Facility entity for EAV attribute storage (equipment, custom fields)",
    attributes=_EQUIPMENT_ATTRIBUTES,
    attribute_prefixes=("equipment_",),
    group=GroupMapping(
        group_attribute="equipment_group_id",
        fields=(
            FieldMapping("equipment_name", ("name", "equipmentName", "item")),
            FieldMapping("equipment_quantity", ("quantity", "qty", "count")),
            FieldMapping("equipment_condition", ("condition", "status")),
            FieldMapping("equipment_notes", ("notes", "description")),
        ),
    ),
    legacy_table="facilities",
    legacy_blob_column="equipment_list",
    legacy_note="List of equipment available in the facility",
)


def _profile(
    name: str,
    value_kind: str,
    sort_order: int,
    *,
    display_name: str,
    **kwargs,
) -> AttributeSpec:
    return AttributeSpec(
        name=name,
        value_kind=value_kind,
        display_name=display_name,
        sort_order=sort_order,
        **kwargs,
    )


_USER_PROFILE_ATTRIBUTES = (
    _profile("common_preferred_name", "string", 1, display_name="Preferred Name"),
    _profile("common_pronouns", "string", 2, display_name="Pronouns"),
    _profile("common_phone_number", "string", 3, display_name="Phone Number"),
    _profile("common_secondary_email", "string", 4, display_name="Secondary Email"),
    _profile("common_address_street", "string", 5, display_name="Street Address"),
    _profile("common_address_city", "string", 6, display_name="City"),
    _profile("common_address_state", "string", 7, display_name="State/Province"),
    _profile("common_address_postal_code", "string", 8, display_name="Postal Code"),
    _profile("common_address_country", "string", 9, display_name="Country"),
    _profile("common_date_of_birth", "date", 10, display_name="Date of Birth"),
    _profile("common_nationality", "string", 11, display_name="Nationality"),
    _profile("common_profile_picture_url", "string", 12, display_name="Profile Picture URL"),
    _profile("common_bio", "text", 13, display_name="Biography"),
    _profile("common_linkedin_profile", "string", 14, display_name="LinkedIn Profile"),
    _profile("student_id", "string", 20, display_name="Student ID"),
    _profile("student_major", "string", 21, display_name="Major"),
    _profile("student_minor", "string", 22, display_name="Minor"),
    _profile(
        "student_gpa", "decimal", 23, display_name="GPA", validation_rules={"min": 0, "max": 4.0}
    ),
    _profile(
        "student_expected_graduation_year",
        "integer",
        24,
        display_name="Expected Graduation Year",
        validation_rules={"min": 2000, "max": 2100},
    ),
    _profile("student_enrollment_date", "date", 25, display_name="Enrollment Date"),
    _profile(
        "student_classification",
        "string",
        26,
        display_name="Classification",
        validation_rules={
            "enum": ["Freshman", "Sophomore", "Junior", "Senior", "Graduate", "PhD"]
        },
    ),
    _profile(
        "student_enrollment_status",
        "string",
        27,
        display_name="Enrollment Status",
        validation_rules={"enum": ["Full-time", "Part-time", "Leave of Absence", "Withdrawn"]},
    ),
    _profile(
        "student_housing_status",
        "string",
        28,
        display_name="Housing Status",
        validation_rules={"enum": ["On-campus", "Off-campus", "Commuter"]},
    ),
    _profile(
        "student_academic_standing",
        "string",
        29,
        display_name="Academic Standing",
        validation_rules={
            "enum": ["Good Standing", "Academic Probation", "Academic Warning", "Dean's List"]
        },
    ),
    _profile("instructor_research_interests", "json", 40, display_name="Research Interests"),
    _profile(
        "instructor_academic_rank",
        "string",
        41,
        display_name="Academic Rank",
        validation_rules={
            "enum": [
                "Adjunct",
                "Lecturer",
                "Assistant Professor",
                "Associate Professor",
                "Professor",
                "Distinguished Professor",
                "Emeritus",
            ]
        },
    ),
    _profile(
        "instructor_tenure_status",
        "string",
        42,
        display_name="Tenure Status",
        validation_rules={"enum": ["Non-tenure Track", "Tenure Track", "Tenured"]},
    ),
    _profile("instructor_office_hours_details", "json", 43, display_name="Office Hours"),
    _profile("instructor_publications", "json", 44, display_name="Publications"),
    _profile("instructor_orcid", "string", 45, display_name="ORCID"),
    _profile(
        "parent_relationship_type",
        "string",
        60,
        display_name="Relationship",
        validation_rules={
            "enum": [
                "Mother",
                "Father",
                "Guardian",
                "Stepmother",
                "Stepfather",
                "Grandparent",
                "Other",
            ]
        },
    ),
    _profile(
        "parent_primary_contact",
        "boolean",
        61,
        display_name="Primary Contact",
        default_value="false",
    ),
    _profile(
        "parent_preferred_contact_method",
        "string",
        62,
        display_name="Preferred Contact Method",
        validation_rules={"enum": ["Email", "Phone", "Text", "Mail"]},
    ),
    _profile(
        "parent_emergency_authorized",
        "boolean",
        63,
        display_name="Emergency Authorized",
        default_value="true",
    ),
    _profile(
        "parent_pickup_authorized",
        "boolean",
        64,
        display_name="Pickup Authorized",
        default_value="false",
    ),
    _profile(
        "parent_financial_responsible",
        "boolean",
        65,
        display_name="Financially Responsible",
        default_value="false",
    ),
    _profile("parent_student_ids", "json", 66, display_name="Linked Students"),
    _profile("staff_employee_id", "string", 80, display_name="Employee ID"),
    _profile("staff_position_title", "string", 81, display_name="Position Title"),
    _profile("staff_department", "string", 82, display_name="Department"),
    _profile("staff_hire_date", "date", 83, display_name="Hire Date"),
    _profile(
        "staff_employment_type",
        "string",
        84,
        display_name="Employment Type",
        validation_rules={"enum": ["Full-time", "Part-time", "Contract", "Temporary", "Intern"]},
    ),
    _profile("staff_skills", "json", 85, display_name="Skills"),
)

USER_PROFILE = MigrationPlan(
    name="user_profile",
    version="1.0.0",
    entity_type="User",
    table_ref="users",
    description="User entity for role-specific profile attributes",
    attributes=_USER_PROFILE_ATTRIBUTES,
    attribute_prefixes=("common_", "student_", "instructor_", "parent_", "staff_"),
)

_ASSESSMENT_ATTRIBUTES = (
    AttributeSpec("grading_rubric", "text", display_name="Grading Rubric", sort_order=1),
    AttributeSpec(
        "difficulty_level",
        "string",
        display_name="Difficulty Level",
        validation_rules={"enum": ["Easy", "Medium", "Hard", "Expert"]},
        sort_order=2,
    ),
    AttributeSpec(
        "estimated_duration",
        "integer",
        display_name="Estimated Duration (minutes)",
        validation_rules={"min": 1, "max": 600},
        sort_order=3,
    ),
    AttributeSpec("prerequisite_topics", "json", display_name="Prerequisite Topics", sort_order=4),
    AttributeSpec("learning_objectives", "json", display_name="Learning Objectives", sort_order=5),
    AttributeSpec("instructor_notes", "text", display_name="Instructor Notes", sort_order=6),
    AttributeSpec(
        "proctoring_required",
        "boolean",
        display_name="Proctoring Required",
        default_value="false",
        sort_order=7,
    ),
    AttributeSpec(
        "calculator_allowed",
        "boolean",
        display_name="Calculator Allowed",
        default_value="false",
        sort_order=8,
    ),
    AttributeSpec("reference_materials", "text", display_name="Reference Materials", sort_order=9),
    AttributeSpec("accommodation_notes", "text", display_name="Accommodation Notes", sort_order=10),
    AttributeSpec(
        "assessment_weight",
        "decimal",
        display_name="Weight (%)",
        validation_rules={"min": 0, "max": 100},
        sort_order=11,
    ),
    AttributeSpec(
        "retry_delay_hours",
        "integer",
        display_name="Retry Delay (hours)",
        validation_rules={"min": 0, "max": 720},
        default_value="0",
        sort_order=12,
    ),
    AttributeSpec(
        "show_answers_after",
        "string",
        display_name="Show Answers After",
        validation_rules={"enum": ["immediately", "after_due_date", "never"]},
        default_value="never",
        sort_order=13,
    ),
    AttributeSpec(
        "shuffle_questions",
        "boolean",
        display_name="Shuffle Questions",
        default_value="false",
        sort_order=14,
    ),
    AttributeSpec(
        "shuffle_options",
        "boolean",
        display_name="Shuffle Options",
        default_value="false",
        sort_order=15,
    ),
    AttributeSpec(
        "passing_score",
        "decimal",
        display_name="Passing Score (%)",
        validation_rules={"min": 0, "max": 100},
        sort_order=16,
    ),
    AttributeSpec("custom_metadata", "json", display_name="Custom Metadata", sort_order=99),
)

ASSESSMENT_METADATA = MigrationPlan(
    name="assessment_metadata",
    version="1.0.0",
    entity_type="Assessment",
    table_ref="assessments",
    description="Assessment entity for extensible metadata",
    attributes=_ASSESSMENT_ATTRIBUTES,
)

_PLANS: dict[str, MigrationPlan] = {
    plan.name: plan
    for plan in (INSTRUCTOR_AWARDS, FACILITY_EQUIPMENT, USER_PROFILE, ASSESSMENT_METADATA)
}


def known_plans() -> list[str]:
    return sorted(_PLANS)


def get_plan(name: str) -> MigrationPlan:
    plan = _PLANS.get(name)
    if plan is None:
        raise SchemaError(f"Unknown migration plan '{name}'")
    return plan


def build_legacy_source(
    plan: MigrationPlan,
    db_path: Path,
    *,
    table: str | None = None,
    id_column: str | None = None,
    blob_column: str | None = None,
) -> SqliteBlobSource | None:
    """The plan's legacy blob column as a source, or None for definition-only plans."""

    if not plan.reads_legacy:
        return None

    table = table or plan.legacy_table
    blob_column = blob_column or plan.legacy_blob_column
    if table is None or blob_column is None:
        raise SchemaError(f"Plan '{plan.name}' has no legacy column configured")

    return SqliteBlobSource(
        db_path,
        table=table,
        id_column=id_column or plan.legacy_id_column,
        blob_column=blob_column,
    )


def register_legacy_sources(service: EavService, db_path: Path) -> list[str]:
    """Register a read fallback for every plan whose legacy column exists in `db_path`."""

    registered: list[str] = []
    for plan in _PLANS.values():
        source = build_legacy_source(plan, db_path)
        if source is None or not source.exists():
            continue
        service.register_legacy_source(plan.entity_type, source)
        registered.append(source.name)
    return registered
