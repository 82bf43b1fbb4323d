# discount_engine/exceptions.py
class DiscountEngineError(Exception):
    """Base error for the discount engine"""

    retryable: bool = False


class ConfigurationError(DiscountEngineError):
    """Missing or invalid configuration"""


class RuleNotFoundError(DiscountEngineError):
    """Administrative operation on a rule that does not exist"""

    def __init__(self, rule_id: int):
        super().__init__(f"Discount rule {rule_id} not found")
        self.rule_id = rule_id


class DuplicateCodeError(DiscountEngineError):
    """A rule with the same code (case-insensitive) already exists"""

    def __init__(self, code: str):
        super().__init__(f"Discount code {code!r} is already in use")
        self.code = code


class RepositoryUnavailableError(DiscountEngineError):
    """The rule store could not be reached; the call may be retried"""

    retryable = True


class RedemptionCommitError(DiscountEngineError):
    """Committing redemptions failed; nothing was recorded and the order must not be confirmed"""

    retryable = True
