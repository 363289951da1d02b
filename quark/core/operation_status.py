from enum import StrEnum


class OperationStatus(StrEnum):
    CREATING = "creating"
    UPDATING = "updating"
    DONE = "done"
