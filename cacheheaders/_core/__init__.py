from cacheheaders._core._dates import DateParser as DateParser, DefaultDateParser as DefaultDateParser
from cacheheaders._core._headers import Headers as Headers
from cacheheaders._core._spec import (
    AnyState as AnyState,
    HasValidator as HasValidator,
    NotModified as NotModified,
    NoValidator as NoValidator,
    Outcome as Outcome,
    Pass as Pass,
    PreconditionFailed as PreconditionFailed,
    State as State,
    create_initial_state as create_initial_state,
    evaluate as evaluate,
)
from cacheheaders._core.models import (
    ETag as ETag,
    ETagStrength as ETagStrength,
    Request as Request,
    Response,
    StoreKey as StoreKey,
    ValidatorValue as ValidatorValue,
)

__all__ = (
    "AnyState",
    "DateParser",
    "DefaultDateParser",
    "ETag",
    "ETagStrength",
    "HasValidator",
    "Headers",
    "NoValidator",
    "NotModified",
    "Outcome",
    "Pass",
    "PreconditionFailed",
    "Request",
    "Response",
    "State",
    "StoreKey",
    "ValidatorValue",
    "create_initial_state",
    "evaluate",
)
