"""
Staged edits for server-owned records.

An edit form holds a draft. The server-confirmed value is only replaced when
a save succeeds, so a failed save never leaks half-applied edits into what
the page shows as current.
"""

from typing import Any, Dict, Iterable, Optional


class StagedChanges:
    """
    A draft of selected fields on top of a confirmed record.

    Args:
        confirmed: Field values as last confirmed by the server
        fields: Names of the editable fields
    """

    def __init__(self, confirmed: Dict[str, Any], fields: Iterable[str]):
        self.fields = tuple(fields)
        self.confirmed = {name: confirmed.get(name) for name in self.fields}
        self.staged: Dict[str, Any] = {}

    def stage(self, **changes: Any) -> None:
        """Record edits. Values equal to the confirmed value are dropped."""
        for name, value in changes.items():
            if name not in self.fields:
                raise KeyError(f"{name} is not an editable field")
            if value == self.confirmed.get(name):
                self.staged.pop(name, None)
            else:
                self.staged[name] = value

    @property
    def has_changes(self) -> bool:
        return bool(self.staged)

    @property
    def draft(self) -> Dict[str, Any]:
        """Confirmed values overlaid with staged edits."""
        return {**self.confirmed, **self.staged}

    def commit(self, server_value: Optional[Dict[str, Any]] = None) -> None:
        """
        Reconcile after a successful save.

        The server's response wins over the draft when one is given.
        """
        source = server_value if server_value is not None else self.draft
        self.confirmed = {name: source.get(name) for name in self.fields}
        self.staged = {}

    def discard(self) -> None:
        self.staged = {}
