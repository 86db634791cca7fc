"""领域层业务异常定义，供领域、应用与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class DonationNotFoundException(BusinessException):
    def __init__(self, donation_id: Optional[int] = None, *, order_id: Optional[str] = None):
        details = {}
        if donation_id is not None:
            details["donation_id"] = donation_id
        if order_id is not None:
            details["order_id"] = order_id
        super().__init__(
            code=PaymentCode.DONATION_NOT_FOUND,
            message="Donation not found",
            error_type="DonationNotFound",
            details=details or None,
        )


class ProgramNotFoundException(BusinessException):
    def __init__(self, program_id: int):
        super().__init__(
            code=PaymentCode.PROGRAM_NOT_FOUND,
            message="Program not found",
            error_type="ProgramNotFound",
            details={"program_id": program_id},
            field="program_id",
        )


class InvalidSignatureException(BusinessException):
    def __init__(self, order_id: Optional[str] = None, *, provider: str = "midtrans"):
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message="Invalid gateway signature",
            error_type="InvalidSignature",
            details={"provider": provider, "order_id": order_id},
            field="signature_key",
        )


class UnmappedGatewayStatusException(BusinessException):
    """网关状态不在映射表中：只记录并忽略，绝不视为已支付"""

    def __init__(self, transaction_status: str, *, order_id: Optional[str] = None, provider: str = "midtrans"):
        self.transaction_status = transaction_status
        super().__init__(
            code=PaymentCode.UNMAPPED_STATUS,
            message=f"Unmapped gateway status: {transaction_status!r}",
            error_type="UnmappedGatewayStatus",
            details={"provider": provider, "order_id": order_id, "transaction_status": transaction_status},
            field="transaction_status",
        )


class InvalidStatusTransitionException(BusinessException):
    def __init__(self, current: str, target: str, *, donation_id: Optional[int] = None):
        super().__init__(
            code=PaymentCode.INVALID_TRANSITION,
            message=f"Cannot move donation from {current} to {target}",
            error_type="InvalidStatusTransition",
            details={"donation_id": donation_id, "current": current, "target": target},
            field="status",
        )


class DuplicateIdentifierException(BusinessException):
    def __init__(self, field: str, value: str):
        super().__init__(
            code=PaymentCode.DUPLICATE_IDENTIFIER,
            message=f"Duplicate {field}: {value}",
            error_type="DuplicateIdentifier",
            details={field: value},
            field=field,
        )


class LedgerWriteConflictException(BusinessException):
    """存储层竞争（锁等待超时、死锁等），整个调用可以安全重试"""

    def __init__(self, reason: Optional[str] = None):
        super().__init__(
            code=PaymentCode.LEDGER_WRITE_CONFLICT,
            message="Storage contention, retry later",
            error_type="LedgerWriteConflict",
            details={"reason": reason} if reason else None,
        )


class GatewayUnavailableException(BusinessException):
    """网关不可达 / 超时 / 5xx，可重试"""

    def __init__(self, message: str = "Payment gateway unavailable", *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.PROVIDER_RECOVERABLE,
            message=message,
            error_type="GatewayUnavailable",
            details=full_details,
        )


class GatewayRejectedException(BusinessException):
    """网关拒绝请求（参数非法、金额低于下限等），不应重试"""

    def __init__(
        self,
        message: str = "Payment gateway rejected the request",
        *,
        provider: str,
        provider_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=message,
            error_type="GatewayRejected",
            details=full_details,
        )
