"""Demo data for the reference API (see ``janvani.devserver``)."""

from .complaints import COMPLAINTS, import_complaints
from .users import USERS, import_users


def import_all(db):
    user_ids = import_users(db)
    import_complaints(db, user_ids)
    return user_ids
