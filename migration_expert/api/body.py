"""JSON body parsing for protected routes.

FastAPI reads a declared body parameter before any dependency runs, so a
route that takes its model as a parameter would answer a malformed body
with 400 even when the caller has no credential. Protected routes take the
raw request instead and parse it here, after `require_identity` has passed.
"""

from typing import Type, TypeVar

from fastapi import Request
from pydantic import BaseModel, ValidationError

from migration_expert.core.errors import MALFORMED_BODY_MESSAGE, InvalidRequestError

ModelT = TypeVar("ModelT", bound=BaseModel)


async def read_body(request: Request, model: Type[ModelT]) -> ModelT:
    """Parse the request body as JSON into model.

    Raises:
        InvalidRequestError: body is not JSON or does not fit model
    """
    try:
        data = await request.json()
    except ValueError as e:
        raise InvalidRequestError(MALFORMED_BODY_MESSAGE) from e

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidRequestError(MALFORMED_BODY_MESSAGE) from e
