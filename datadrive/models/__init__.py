# datadrive/models/__init__.py

from .user import User
from .dataset import Dataset, DatasetVersion, DataRow, DatasetAccess
from .edit_request import EditRequest, EditRequestDetail, MediaAttachment
from .audit import AuditLog

__all__ = [
    "User",
    "Dataset",
    "DatasetVersion",
    "DataRow",
    "DatasetAccess",
    "EditRequest",
    "EditRequestDetail",
    "MediaAttachment",
    "AuditLog",
]
