"""
用户标识校验

用户ID会写入数据库并作为图片存储目录名，必须在任何付费调用之前校验。
"""

import re

from ..core.constants import UserConstants
from ..exceptions import InvalidParameterError

_USER_ID_RE = re.compile(UserConstants.ID_PATTERN)


def is_valid_user_id(user_id: str) -> bool:
    return bool(user_id) and len(user_id) <= UserConstants.MAX_ID_LENGTH and bool(_USER_ID_RE.match(user_id))


def validate_user_id(user_id: str) -> str:
    """
    校验用户ID

    Raises:
        InvalidParameterError: 为空、超长或含非法字符
    """
    if not is_valid_user_id(user_id):
        raise InvalidParameterError(
            f"用户ID只能包含字母、数字、下划线和连字符，且不超过{UserConstants.MAX_ID_LENGTH}个字符",
            "X-User-Id",
        )
    return user_id
