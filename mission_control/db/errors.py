"""Errors that abort startup when the store cannot be brought up to date."""


class MigrationError(RuntimeError):
    """A migration file failed to apply; its transaction was rolled back."""


class MigrationChecksumError(MigrationError):
    def __init__(self, name: str):
        super().__init__(f"checksum mismatch for {name}")
        self.name = name
