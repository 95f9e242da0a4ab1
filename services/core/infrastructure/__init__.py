# Infrastructure Layer
from .uow import (
    UnitOfWork,
    translate_storage_error,
)
