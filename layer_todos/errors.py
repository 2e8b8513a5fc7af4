"""Exception types raised by the record store and the cascade helpers."""


class StoreQueryFailure(Exception):
    """A select/insert/update/delete/upsert was rejected by the store."""

    def __init__(self, operation: str, table: str, message: str):
        super().__init__(f'{operation} on {table} failed: {message}')
        self.operation = operation
        self.table = table
        self.message = message


class ConstraintViolation(StoreQueryFailure):
    """An insert broke a table constraint (duplicate unique key, missing required column)."""


class PartialCascadeFailure(StoreQueryFailure):
    """A cascade stopped after some of its mutations had already landed.

    `result` is the CascadeResult describing what succeeded and where the
    cascade stopped. Nothing that already succeeded is rolled back.
    """

    def __init__(self, result):
        super().__init__(result.operation, 'todos', result.error or 'cascade failed')
        self.result = result


class TodoNotFound(LookupError):
    def __init__(self, todo_id: str):
        super().__init__(f'todo not found: {todo_id}')
        self.todo_id = todo_id
