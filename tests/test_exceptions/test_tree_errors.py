"""分类树异常测试

测试异常层次、HTTP 状态码和错误代码。
"""

import pytest
from fastapi import status

from qbtree.exceptions import (
    BusinessException,
    CycleDetectedError,
    DuplicateCodeError,
    ErrorCode,
    HasChildrenError,
    ImportAbortedError,
    LockTimeoutError,
    MalformedPathError,
    NodeNotFoundError,
    ReorderSetMismatchError,
    ResourceConflictException,
    ResourceNotFoundException,
    SubtreeTooLargeError,
    TreeError,
    ValidationException,
)


class TestBusinessException:
    """业务异常基类"""

    def test_defaults(self):
        e = BusinessException("操作失败")

        assert e.code == ErrorCode.BUSINESS_ERROR
        assert e.code_value == "BUSINESS_ERROR"
        assert e.status_code == status.HTTP_400_BAD_REQUEST
        assert str(e) == "操作失败"

    def test_string_code(self):
        assert BusinessException("x", code="CUSTOM").code_value == "CUSTOM"

    def test_to_dict_copies_details(self):
        e = BusinessException("导入失败", details=["MATH 已存在"], node_id=12)

        data = e.to_dict()
        data["details"].append("changed")

        assert data["extra"] == {"node_id": 12}
        assert e.details == ["MATH 已存在"]

    def test_repr(self):
        assert "status_code=400" in repr(BusinessException("x"))


class TestTreeErrors:
    """分类树异常"""

    @pytest.mark.parametrize("error, family, status_code, code", [
        (NodeNotFoundError(3), ResourceNotFoundException, 404, "NODE_NOT_FOUND"),
        (DuplicateCodeError("MATH", 2), ResourceConflictException, 409, "DUPLICATE_CODE"),
        (CycleDetectedError(2, 3), ResourceConflictException, 409, "CYCLE_DETECTED"),
        (HasChildrenError(1, 2), ResourceConflictException, 409, "HAS_CHILDREN"),
        (LockTimeoutError(["-1-"], 1.0), ResourceConflictException, 409, "LOCK_TIMEOUT"),
        (MalformedPathError("1/2"), ValidationException, 400, "MALFORMED_PATH"),
        (SubtreeTooLargeError(1, 20, 10), ValidationException, 400, "SUBTREE_TOO_LARGE"),
        (ImportAbortedError(0), ValidationException, 400, "IMPORT_ABORTED"),
    ])
    def test_families(self, error, family, status_code, code):
        assert isinstance(error, TreeError)
        assert isinstance(error, family)
        assert error.status_code == status_code
        assert error.code_value == code

    def test_context_in_extra(self):
        e = DuplicateCodeError("MATH", existing_id=2)

        assert e.existing_id == 2
        assert e.to_dict()["extra"] == {"node_code": "MATH", "existing_id": 2}

    def test_reorder_mismatch_details(self):
        e = ReorderSetMismatchError(1, missing={4, 2}, unexpected=[9])

        assert e.missing == [2, 4]
        assert e.unexpected == [9]
        assert e.duplicated == []
        assert len(e.details) == 2

    def test_catch_as_tree_error(self):
        with pytest.raises(TreeError):
            raise NodeNotFoundError(5)

    def test_error_code_is_str(self):
        assert ErrorCode.HAS_CHILDREN == "HAS_CHILDREN"
