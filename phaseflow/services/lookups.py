"""Row lookups shared by the workflow services.

``for_update`` takes a row lock (SELECT ... FOR UPDATE) so concurrent
workflow writes on the same project or proof run one after another.
"""

from sqlalchemy import select

from phaseflow.core.exceptions import NotFoundError
from phaseflow.models import db
from phaseflow.models.project import Project
from phaseflow.models.proof import ProofSession


def _load(model, pk, label: str, for_update: bool):
    stmt = select(model).where(model.id == pk)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    row = db.session.execute(stmt).scalar_one_or_none()
    if row is None:
        raise NotFoundError(resource=label, resource_id=pk)
    return row


def get_project(project_id: int, *, for_update: bool = False) -> Project:
    return _load(Project, project_id, "Project", for_update)


def get_proof(proof_id: int, *, for_update: bool = False) -> ProofSession:
    return _load(ProofSession, proof_id, "ProofSession", for_update)
