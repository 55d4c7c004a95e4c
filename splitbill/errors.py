class SplitBillError(Exception):
    """Base class for ledger errors surfaced to the chat or HTTP layer."""


class NotFoundError(SplitBillError):
    def __init__(self, kind: str, id):
        self.kind = kind
        self.id = id
        super().__init__(f"{kind} {id} not found")


class InvalidInputError(SplitBillError):
    pass


class OracleDegradedError(SplitBillError):
    pass


class StoreFailureError(SplitBillError):
    pass
