from __future__ import annotations

from leadtables.core.auth import AuthUser
from leadtables.leads.repositories import LeadStore, TableRecord


class TablePermissionOracle:
    """Answers read/edit questions for one user.

    Admins may read and edit every table of their own org. Everyone else needs a ``table_access``
    row; ``edit`` access implies ``read``. Tables of another org are never visible.
    """

    def __init__(self, store: LeadStore, user: AuthUser) -> None:
        self.store = store
        self.user = user

    def _access_level(self, table: TableRecord) -> str | None:
        return self.store.get_access_level(table.id, self.user.sub)

    def is_visible(self, table: TableRecord) -> bool:
        return table.org_id == self.user.org_id

    def can_read_table(self, table: TableRecord) -> bool:
        if not self.is_visible(table):
            return False
        if self.user.is_admin:
            return True
        return self._access_level(table) in {"read", "edit"}

    def can_edit_table(self, table: TableRecord) -> bool:
        if not self.is_visible(table):
            return False
        if self.user.is_admin:
            return True
        return self._access_level(table) == "edit"
