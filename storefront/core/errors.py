# storefront/core/errors.py
"""
业务异常分类（服务层抛出，HTTP 层统一翻译为 Problem）：

  ValidationError         400  输入格式/取值不合法
  NotFoundError           404  资源不存在
  BusinessRuleError       400  优惠不可用 / 积分不足 / 不允许取消 等业务规则
  LinesUnavailableError   409  多行缺货/下架，一次性批量返回
  ConflictError           409  客户端预览与服务端重算不一致 / 并发状态冲突
  InvalidTransitionError  400  非法的订单状态迁移
  InternalError           500  未预期异常
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class StorefrontError(Exception):
    code = "storefront_error"
    status = 400

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status: int | None = None,
        *,
        details: Optional[List[Dict[str, Any]]] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        if code:
            self.code = code
        if status:
            self.status = status
        self.message = message
        self.details = list(details or [])
        self.context = dict(context or {})


class ValidationError(StorefrontError):
    code = "validation_error"
    status = 400


class NotFoundError(StorefrontError):
    code = "not_found"
    status = 404


class BusinessRuleError(StorefrontError):
    code = "business_rule_violation"
    status = 400


class LinesUnavailableError(StorefrontError):
    """
    批量缺货：details 中每行一个 {type, path, product_id, quantity, reason}。
    """

    code = "lines_unavailable"
    status = 409

    def __init__(self, lines: List[Dict[str, Any]], message: str = "部分商品不存在或库存不足"):
        details = [
            {"type": "shortage", "path": f"lines[{i}]", **line} for i, line in enumerate(lines)
        ]
        super().__init__(message, details=details)
        self.lines = list(lines)


class ConflictError(StorefrontError):
    code = "preview_conflict"
    status = 409


class InvalidTransitionError(StorefrontError):
    code = "invalid_transition"
    status = 400

    def __init__(self, current: str, target: str):
        super().__init__(
            f"订单状态不允许从 {current} 变更为 {target}",
            context={"current_status": current, "target_status": target},
        )
        self.current = current
        self.target = target


class InternalError(StorefrontError):
    code = "internal_error"
    status = 500
