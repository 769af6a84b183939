"""
============================================================================
FILE: crossref.py
LOCATION: reconciler/crossref.py
============================================================================

PURPOSE:
    Consistency checkers between the Firestore hierarchy and the PostgreSQL
    mirror. Each checker takes a full snapshot of both sides, keys it by a
    natural key (institution name, email, email domain), classifies records
    as matched / missing / mismatched and logs a readable report.

ROLE IN PROJECT:
    Read-only diagnostics behind the tools/ scripts and the sync monitor.
    Firestore is authoritative: plan_institution_connections emits SQL text
    that brings PostgreSQL in line with Firestore and never the reverse.
    Nothing here executes a write against PostgreSQL.

KEY COMPONENTS:
    - cross_reference_data: institution links, domain, UID and name matches
    - check_contact_form_connections: interests vs. users, ILIKE searches
    - find_missing_users: interests whose email has no PostgreSQL user
    - plan_institution_connections: repair SQL for unlinked/missing users

DEPENDENCIES:
    - External: pydantic
    - Internal: db (session protocol), hierarchy, outbox, roles, models

USAGE:
    with store.session() as pg:
        report = cross_reference_data(db, pg)
============================================================================
"""
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

import pydantic

from reconciler.hierarchy import InstitutionHierarchyService
from reconciler.logging_config import get_logger
from reconciler.models import Institution, InstitutionInterest
from reconciler.outbox import ReconciliationLog
from reconciler.roles import email_domain


logger = get_logger("crossref")

INTERESTS_COLLECTION = "institution_interests"

# Collections that have held contact-form submissions at some point
CONTACT_FORM_COLLECTIONS = (
    "contact_forms",
    "institution_requests",
    "signup_requests",
    "partnership_requests",
)

TEMP_PASSWORD_HASH = "TEMP_PASSWORD_HASH_PLACEHOLDER"
SYNC_INSTITUTION_OPERATION = "sync_institution_to_postgres"


# ---------------------------------------------------------------------------
# Report models
# ---------------------------------------------------------------------------


class InstitutionLink(pydantic.BaseModel):
    """A PostgreSQL user's institution_id resolved in both stores."""

    email: str
    institutionId: str
    postgresName: Optional[str] = None
    firestoreName: Optional[str] = None


class DomainMatch(pydantic.BaseModel):
    email: str
    domain: str
    postgresInstitution: Optional[str] = None
    firestoreInstitution: Optional[str] = None
    firestoreInstitutionId: Optional[str] = None


class NameMatch(pydantic.BaseModel):
    name: str
    postgresId: str
    firestoreId: str

    @property
    def ids_match(self) -> bool:
        return str(self.postgresId) == str(self.firestoreId)


class CrossReferenceReport(pydantic.BaseModel):
    institutionLinks: List[InstitutionLink] = pydantic.Field(default_factory=list)
    domainMatches: List[DomainMatch] = pydantic.Field(default_factory=list)
    firebaseLinkedUsers: List[dict] = pydantic.Field(default_factory=list)
    nameMatches: List[NameMatch] = pydantic.Field(default_factory=list)
    onlyInPostgres: List[str] = pydantic.Field(default_factory=list)
    onlyInFirestore: List[str] = pydantic.Field(default_factory=list)


class ContactFormReport(pydantic.BaseModel):
    domainMatches: List[DomainMatch] = pydantic.Field(default_factory=list)
    interests: List[InstitutionInterest] = pydantic.Field(default_factory=list)
    contactFormCollections: Dict[str, int] = pydantic.Field(default_factory=dict)
    searchResults: Dict[str, Dict[str, List[dict]]] = pydantic.Field(default_factory=dict)


class ConnectionPlan(pydantic.BaseModel):
    statements: List[str] = pydantic.Field(default_factory=list)
    alreadyLinked: List[str] = pydantic.Field(default_factory=list)
    unmatched: List[InstitutionInterest] = pydantic.Field(default_factory=list)

    def sql(self) -> str:
        return "\n\n".join(self.statements)


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


def list_interests(db) -> List[InstitutionInterest]:
    return [
        InstitutionInterest.from_document(doc.id, doc.to_dict())
        for doc in db.collection(INTERESTS_COLLECTION).stream()
    ]


def _firestore_institutions(db) -> List[Institution]:
    return InstitutionHierarchyService(db).list_institutions()


def _by_name(institutions: Iterable[Institution]) -> Dict[str, List[Institution]]:
    index = defaultdict(list)
    for institution in institutions:
        index[institution.name].append(institution)
    return index


def match_institutions_by_name(
    pg_institutions: List[dict], fb_institutions: List[Institution]
) -> List[NameMatch]:
    """Pair institutions with identical names; IDs are not compared."""
    fb_by_name = _by_name(fb_institutions)
    matches = []
    for row in pg_institutions:
        for institution in fb_by_name.get(row.get("name"), []):
            matches.append(
                NameMatch(
                    name=institution.name,
                    postgresId=str(row["id"]),
                    firestoreId=institution.id,
                )
            )
    return matches


def _domain_matches(
    pg_users: List[dict],
    pg_institutions: Optional[List[dict]],
    fb_institutions: List[Institution],
) -> List[DomainMatch]:
    # Approximate: shared mail providers will match any institution using them
    matches = []
    for user in pg_users:
        domain = email_domain(user.get("email"))
        if not domain:
            continue
        pg_match = next(
            (i for i in pg_institutions or [] if (i.get("domain") or "").lower() == domain),
            None,
        )
        fb_match = next(
            (i for i in fb_institutions if (i.domain or "").lower() == domain),
            None,
        )
        if pg_match is None and fb_match is None:
            continue
        matches.append(
            DomainMatch(
                email=user["email"],
                domain=domain,
                postgresInstitution=pg_match.get("name") if pg_match else None,
                firestoreInstitution=fb_match.name if fb_match else None,
                firestoreInstitutionId=fb_match.id if fb_match else None,
            )
        )
    return matches


# ---------------------------------------------------------------------------
# Checkers
# ---------------------------------------------------------------------------


def cross_reference_data(db, pg) -> CrossReferenceReport:
    """Compare PostgreSQL users/institutions with Firestore institutions."""
    pg_users = pg.fetch_users()
    pg_institutions = pg.fetch_institutions()
    fb_institutions = _firestore_institutions(db)
    logger.info(
        "Cross-referencing %s PostgreSQL users, %s PostgreSQL institutions, "
        "%s Firestore institutions",
        len(pg_users),
        len(pg_institutions),
        len(fb_institutions),
    )

    pg_by_id = {str(row["id"]): row for row in pg_institutions}
    fb_by_id = {inst.id: inst for inst in fb_institutions}
    report = CrossReferenceReport()

    for user in pg_users:
        institution_id = user.get("institution_id")
        if not institution_id:
            continue
        institution_id = str(institution_id)
        pg_inst = pg_by_id.get(institution_id)
        fb_inst = fb_by_id.get(institution_id)
        report.institutionLinks.append(
            InstitutionLink(
                email=user["email"],
                institutionId=institution_id,
                postgresName=pg_inst.get("name") if pg_inst else None,
                firestoreName=fb_inst.name if fb_inst else None,
            )
        )
        logger.info(
            "User %s: PostgreSQL institution %s, Firestore institution %s (%s)",
            user["email"],
            pg_inst.get("name") if pg_inst else "not found",
            fb_inst.name if fb_inst else "not found",
            institution_id,
        )

    report.domainMatches = _domain_matches(pg_users, pg_institutions, fb_institutions)
    for match in report.domainMatches:
        logger.info(
            "Domain %s of %s matches PostgreSQL %s / Firestore %s",
            match.domain,
            match.email,
            match.postgresInstitution or "-",
            match.firestoreInstitution or "-",
        )

    report.firebaseLinkedUsers = [
        {"email": user["email"], "firebaseUid": user["firebase_uid"]}
        for user in pg_users
        if user.get("firebase_uid")
    ]

    report.nameMatches = match_institutions_by_name(pg_institutions, fb_institutions)
    for match in report.nameMatches:
        if match.ids_match:
            logger.info("Institution %r matched, same ID %s", match.name, match.firestoreId)
        else:
            logger.warning(
                "Institution %r matched by name with differing IDs: PostgreSQL %s, Firestore %s",
                match.name,
                match.postgresId,
                match.firestoreId,
            )

    fb_names = {inst.name for inst in fb_institutions}
    pg_names = {row.get("name") for row in pg_institutions}
    report.onlyInPostgres = sorted(n for n in pg_names if n and n not in fb_names)
    report.onlyInFirestore = sorted(n for n in fb_names if n and n not in pg_names)
    for name in report.onlyInPostgres:
        logger.warning("Institution %r exists only in PostgreSQL", name)
    for name in report.onlyInFirestore:
        logger.warning("Institution %r exists only in Firestore", name)

    return report


def check_contact_form_connections(
    db, pg, search_terms: Iterable[str] = ()
) -> ContactFormReport:
    """Trace contact-form submissions to users and institutions.

    Args:
        search_terms: Institution names to look for in PostgreSQL users and
            institutions (case-insensitive substring match).
    """
    pg_users = pg.fetch_users()
    fb_institutions = _firestore_institutions(db)
    report = ContactFormReport()

    report.domainMatches = [
        match
        for match in _domain_matches(pg_users, None, fb_institutions)
        if match.firestoreInstitution
    ]
    for match in report.domainMatches:
        logger.info(
            "User %s matches Firestore institution %s (%s)",
            match.email,
            match.firestoreInstitution,
            match.firestoreInstitutionId,
        )

    report.interests = list_interests(db)
    logger.info("Found %s institution interest requests", len(report.interests))
    for interest in report.interests:
        logger.info(
            "Interest %s: %s <%s> status=%s",
            interest.institutionName or "Not provided",
            interest.contactName or "Not provided",
            interest.email or "Not provided",
            interest.status,
        )

    for name in CONTACT_FORM_COLLECTIONS:
        count = sum(1 for _ in db.collection(name).stream())
        report.contactFormCollections[name] = count
        logger.info("Collection %s: %s documents", name, count)

    for term in search_terms:
        users = pg.search_users(term)
        institutions = pg.search_institutions(term)
        report.searchResults[term] = {"users": users, "institutions": institutions}
        logger.info(
            "Search %r: %s users, %s institutions in PostgreSQL",
            term,
            len(users),
            len(institutions),
        )

    return report


def find_missing_users(db, pg) -> List[InstitutionInterest]:
    """Return interests whose contact email has no PostgreSQL user."""
    missing = []
    for interest in list_interests(db):
        if pg.find_user_by_email(interest.email) is None:
            logger.info(
                "No PostgreSQL user for %s (%s)", interest.email, interest.institutionName
            )
            missing.append(interest)
    logger.info("%s interest requests have no matching user", len(missing))
    return missing


# ---------------------------------------------------------------------------
# Repair planning
# ---------------------------------------------------------------------------


def sql_literal(value) -> str:
    """Render a Python value as a SQL literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "true" if value else "false"
    return "'" + str(value).replace("'", "''") + "'"


def _insert_institution_sql(institution: Institution) -> str:
    return (
        f"-- Create institution {institution.name}\n"
        "INSERT INTO institutions (id, name, domain, approval_status, is_active, "
        "created_at, updated_at)\n"
        f"VALUES ({sql_literal(institution.id)}, {sql_literal(institution.name)}, "
        f"{sql_literal(institution.domain or '')}, "
        f"{sql_literal(institution.approvalStatus or 'pending')}, "
        f"{sql_literal(bool(institution.isActive))}, NOW(), NOW())\n"
        "ON CONFLICT (id) DO NOTHING;"
    )


def plan_institution_connections(
    db, pg, log: Optional[ReconciliationLog] = None
) -> ConnectionPlan:
    """Build SQL that links interest contacts to their Firestore institution.

    For each interest whose institution exists in Firestore (matched by
    name): a user without an institution gets the institution inserted and
    is linked to it; a missing user is inserted as an institution admin with
    a placeholder password hash. The SQL is returned, never executed. When a
    log is given, every planned repair and every unmatched interest is
    recorded there.
    """
    fb_by_name = _by_name(_firestore_institutions(db))
    plan = ConnectionPlan()

    for interest in list_interests(db):
        candidates = fb_by_name.get(interest.institutionName) or []
        user = pg.find_user_by_email(interest.email)

        if user is not None and user.get("institution_id"):
            plan.alreadyLinked.append(interest.email)
            logger.info("%s already has an institution", interest.email)
            continue

        if not candidates:
            plan.unmatched.append(interest)
            logger.warning(
                "No Firestore institution named %r for %s",
                interest.institutionName,
                interest.email,
            )
            if log is not None:
                log.record(
                    SYNC_INSTITUTION_OPERATION,
                    f"{INTERESTS_COLLECTION}/{interest.id}",
                    {"email": interest.email, "institutionName": interest.institutionName},
                    status="skipped",
                    reason="no Firestore institution with this name",
                )
            continue

        institution = candidates[0]
        statements = [_insert_institution_sql(institution)]
        if user is not None:
            statements.append(
                f"-- Link {interest.email} to {institution.name}\n"
                f"UPDATE users SET institution_id = {sql_literal(institution.id)}, "
                "updated_at = NOW()\n"
                f"WHERE email = {sql_literal(interest.email)};"
            )
            action = "link_user"
        else:
            statements.append(
                f"-- Create user {interest.email}; password is set via the reset flow\n"
                "INSERT INTO users (email, password_hash, name, role, institution_id, "
                "is_email_verified, created_at, updated_at)\n"
                f"VALUES ({sql_literal(interest.email)}, {sql_literal(TEMP_PASSWORD_HASH)}, "
                f"{sql_literal(interest.contactName or interest.institutionName)}, "
                f"'institution_admin', {sql_literal(institution.id)}, false, NOW(), NOW());"
            )
            action = "create_user"

        plan.statements.append("\n\n".join(statements))
        logger.info("Planned %s for %s -> %s", action, interest.email, institution.id)
        target = f"{INTERESTS_COLLECTION}/{interest.id}"
        if log is not None and not log.has_open_entry(SYNC_INSTITUTION_OPERATION, target):
            log.record(
                SYNC_INSTITUTION_OPERATION,
                target,
                {
                    "email": interest.email,
                    "institutionId": institution.id,
                    "action": action,
                },
            )

    return plan
