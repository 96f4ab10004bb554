class DocGuardError(Exception):
    """Base class for errors that are allowed to cross the service boundary."""


class ArchiveIntegrityError(DocGuardError):
    """Stored audit archive no longer matches its checksum."""

    def __init__(self, archive_id: str, expected: str, actual: str):
        self.archive_id = archive_id
        self.expected = expected
        self.actual = actual
        super().__init__(f"Archive {archive_id} failed integrity check")
