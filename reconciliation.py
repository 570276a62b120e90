"""
Contact reconciliation core.

Contacts sharing an email or phone number form a cluster: one primary (the
oldest record) and any number of secondaries linked to it. Links normally
point straight at the primary; older rows may still chain through another
secondary, and a merge flattens them.

identify() takes one request through matching, root resolution, merging,
writing and consolidation against a ContactStore.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Set

from db_models import Contact, ContactResponse, LinkPrecedence
from db_setup import ContactStore
from errors import ContactNotFound, DataIntegrityError
from settings import settings

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    CREATED_NEW = "created_new"
    LINKED_EXISTING = "linked_existing"


@dataclass
class IdentifyResult:
    outcome: Outcome
    contact: ContactResponse
    created: Optional[Contact] = None
    merged_primary_ids: List[int] = field(default_factory=list)


def normalize_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    email = email.strip().lower()
    return email or None


def normalize_phone(phone_number: Optional[str]) -> Optional[str]:
    if phone_number is None:
        return None
    phone_number = phone_number.strip()
    return phone_number or None


def resolve_root(
    store: ContactStore,
    contact_id: int,
    max_depth: Optional[int] = None,
) -> Contact:
    """Follow linkedId references from contact_id until a primary is reached.

    Legacy chains where a secondary points at another secondary are walked
    through. Raises ContactNotFound if contact_id itself is missing and
    DataIntegrityError for a dangling link, a cycle, an orphaned secondary
    or a chain longer than max_depth (settings.max_link_depth by default).
    """
    max_depth = max_depth or settings.max_link_depth
    contact = store.find_by_id_or_fail(contact_id)
    seen = {contact.id}

    while not contact.is_primary:
        if contact.linkedId is None:
            raise DataIntegrityError(
                f"Secondary contact {contact.id} has no linkedId", contact.id
            )
        if contact.linkedId in seen:
            raise DataIntegrityError(
                f"Link cycle through contact {contact.linkedId} starting at {contact_id}",
                contact_id,
            )
        if len(seen) > max_depth:
            raise DataIntegrityError(
                f"Link chain from contact {contact_id} exceeds {max_depth} hops",
                contact_id,
            )

        try:
            contact = store.find_by_id_or_fail(contact.linkedId)
        except ContactNotFound as exc:
            raise DataIntegrityError(
                f"Contact {contact.id} links to missing contact {exc.contact_id}",
                contact.id,
            ) from exc
        seen.add(contact.id)
        logger.debug(f"Resolving {contact_id}: hop to {contact.id}")

    return contact


def find_matches(
    store: ContactStore,
    email: Optional[str],
    phone_number: Optional[str],
) -> List[Contact]:
    """Every contact sharing the email OR the phone number."""
    if email is None and phone_number is None:
        return []
    return store.find_many(email=email, phone_number=phone_number)


def unique_primaries(roots: Iterable[Contact]) -> List[Contact]:
    """Dedupe root primaries by id, oldest first (id breaks createdAt ties)."""
    by_id = {}
    for root in roots:
        by_id.setdefault(root.id, root)
    return sorted(by_id.values(), key=lambda c: (c.createdAt, c.id))


def merge_clusters(
    store: ContactStore,
    old_primary_ids: Iterable[int],
    surviving_primary_id: int,
    max_depth: Optional[int] = None,
) -> None:
    """Repoint every member of each old primary's cluster at the survivor.

    Each old primary is handled in its own atomic unit. Contacts reached
    through legacy chains are repointed too, so the merged cluster is flat.
    """
    for old_primary_id in sorted(set(old_primary_ids) - {surviving_primary_id}):
        with store.atomic():
            members = store.cluster_members(old_primary_id, max_depth)
            ids_to_update = {c.id for c in members} - {surviving_primary_id}
            updated = store.update_many(
                sorted(ids_to_update),
                linked_id=surviving_primary_id,
                link_precedence=LinkPrecedence.SECONDARY,
            )
        logger.info(
            f"Merged cluster {old_primary_id} into {surviving_primary_id} "
            f"({updated} contacts repointed)"
        )


def append_if_new(
    store: ContactStore,
    email: Optional[str],
    phone_number: Optional[str],
    primary_id: int,
    members: Sequence[Contact],
) -> Optional[Contact]:
    """Add a secondary unless some member already holds this exact pair.

    The pair is the dedup key: a request repeating a known email with a new
    phone number (or the other way round) still gets its own row. An absent
    field only matches an absent field.
    """
    for member in members:
        if member.email == email and member.phoneNumber == phone_number:
            return None

    created = store.create(
        email=email,
        phone_number=phone_number,
        linked_id=primary_id,
        link_precedence=LinkPrecedence.SECONDARY,
    )
    logger.info(f"Created secondary contact {created.id} linked to {primary_id}")
    return created


def consolidate(primary: Contact, secondaries: Sequence[Contact]) -> ContactResponse:
    """Project a cluster into the identity summary returned to clients."""
    if not primary.is_primary:
        raise DataIntegrityError(
            f"Contact {primary.id} is not a primary contact", primary.id
        )
    for secondary in secondaries:
        if secondary.is_primary or secondary.id == primary.id:
            raise DataIntegrityError(
                f"Contact {secondary.id} cannot be a secondary of {primary.id}",
                secondary.id,
            )

    emails = {primary.email} | {s.email for s in secondaries}
    phone_numbers = {primary.phoneNumber} | {s.phoneNumber for s in secondaries}

    return ContactResponse(
        primaryContactId=primary.id,
        emails=sorted(e for e in emails if e),
        phoneNumbers=sorted(p for p in phone_numbers if p),
        secondaryContactIds=[s.id for s in secondaries],
    )


def consolidate_cluster(members: Sequence[Contact]) -> ContactResponse:
    """Consolidate a cluster read; it must contain exactly one primary."""
    primaries = [c for c in members if c.is_primary]
    if len(primaries) != 1:
        raise DataIntegrityError(
            f"Expected exactly one primary in cluster, found {len(primaries)} "
            f"({[c.id for c in primaries]})"
        )
    secondaries = [c for c in members if not c.is_primary]
    return consolidate(primaries[0], secondaries)


def _identify(
    store: ContactStore,
    email: Optional[str],
    phone_number: Optional[str],
    max_depth: Optional[int],
) -> IdentifyResult:
    matches = find_matches(store, email, phone_number)

    if not matches:
        primary = store.create(email=email, phone_number=phone_number)
        logger.info(f"Created primary contact {primary.id}")
        return IdentifyResult(
            outcome=Outcome.CREATED_NEW,
            contact=consolidate(primary, []),
            created=primary,
        )

    primaries = unique_primaries(
        resolve_root(store, match.id, max_depth) for match in matches
    )
    survivor = primaries[0]
    merged_ids: Set[int] = {p.id for p in primaries[1:]}
    if merged_ids:
        merge_clusters(store, merged_ids, survivor.id, max_depth)

    members = store.cluster_members(survivor.id, max_depth)
    created = append_if_new(store, email, phone_number, survivor.id, members)
    if created is not None:
        members = store.cluster_members(survivor.id, max_depth)

    return IdentifyResult(
        outcome=Outcome.LINKED_EXISTING,
        contact=consolidate_cluster(members),
        created=created,
        merged_primary_ids=sorted(merged_ids),
    )


def identify(
    store: ContactStore,
    email: Optional[str],
    phone_number: Optional[str],
    *,
    serialize: bool = True,
    max_depth: Optional[int] = None,
) -> IdentifyResult:
    """Resolve (email, phone_number) to one consolidated identity.

    Inputs are normalized here so callers may pass raw request values. With
    serialize=True the whole flow runs in a single store transaction, so two
    overlapping requests cannot both create a primary or read a cluster
    halfway through a merge. Without it only each merge is atomic.
    """
    email = normalize_email(email)
    phone_number = normalize_phone(phone_number)
    if email is None and phone_number is None:
        raise ValueError("At least one of email or phoneNumber is required")

    if not serialize:
        return _identify(store, email, phone_number, max_depth)

    with store.atomic():
        return _identify(store, email, phone_number, max_depth)
