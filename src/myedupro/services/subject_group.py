"""Subject-group lookup."""

from myedupro.backend.gateway import BackendGateway
from myedupro.models.progress import SubjectGroup

SUBJECT_GROUPS_TABLE = "user_databases"


async def load_subject_group(gateway: BackendGateway, user_id: str) -> SubjectGroup | None:
    """Return the user's subject selection, or None if they have not made one."""
    rows = (await gateway.select(SUBJECT_GROUPS_TABLE, {"user_id": user_id}, limit=1)).unwrap()
    if not rows:
        return None
    return SubjectGroup.model_validate(rows[0])


def has_subject_group(group: SubjectGroup | None) -> bool:
    return group is not None and group.has_subjects
