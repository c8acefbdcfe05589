"""文档 ID 格式校验。"""

import re

from resume_core.domain.exceptions import InvalidIdFormatError
from resume_core.domain.models import SubjectRef

MAX_DOCUMENT_ID_LENGTH = 1500

_RESERVED_ID = re.compile(r"^__.*__$")


def is_valid_document_id(doc_id: str) -> bool:
    """判断 ID 是否满足存储层约束。

    - 非空，且不超过 1500 个字符
    - 不包含 '/'
    - 不是 '.' 或 '..'
    - 不是 ``__xxx__`` 形式的保留名
    """

    if not doc_id or len(doc_id) > MAX_DOCUMENT_ID_LENGTH:
        return False
    if "/" in doc_id:
        return False
    if doc_id in (".", ".."):
        return False
    if _RESERVED_ID.match(doc_id):
        return False
    return True


def ensure_valid_subject(subject: SubjectRef) -> None:
    if not is_valid_document_id(subject.id):
        raise InvalidIdFormatError(subject.id)
