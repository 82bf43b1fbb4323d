# discount_engine/utils/messages.py
from datetime import datetime
from ..models.discount import DiscountRule
from ..models.pricing import CommitResult, PricingResult, ValidationFailure, ValidationResult
from .formatters import (
    discount_display, format_price, optional_price, status_label, usage_label, validity_label
)

VALIDATION_MESSAGES = {
    ValidationFailure.NOT_FOUND: "Discount code not found",
    ValidationFailure.INACTIVE: "This discount is inactive",
    ValidationFailure.EXPIRED: "This discount has expired",
    ValidationFailure.NOT_VALID: "This discount is not currently valid",
    ValidationFailure.USAGE_LIMIT_REACHED: "This discount has reached its usage limit",
}


class Messages:
    @staticmethod
    def validation_error(reason: ValidationFailure) -> str:
        return VALIDATION_MESSAGES[reason]

    @staticmethod
    def customer_limit_reached() -> str:
        return "You have already used this discount the maximum number of times"

    @staticmethod
    def format_rule(rule: DiscountRule, now: datetime) -> str:
        """One-block summary of a rule"""
        return (
            f"{rule.code} - {rule.name}\n"
            f"  discount: {discount_display(rule)} on {rule.applies_to.value}\n"
            f"  status: {status_label(rule, now)} ({validity_label(rule, now)})\n"
            f"  usage: {usage_label(rule)}\n"
            f"  priority: {rule.priority}, combinable: {'yes' if rule.is_combinable else 'no'}"
        )

    @staticmethod
    def format_pricing_result(result: PricingResult) -> str:
        applied_text = "\n".join(
            f"- {d.code} on {d.scope_description}: -{format_price(d.amount)}"
            for d in result.applied
        ) or "- none"

        lines = [
            f"Subtotal: {format_price(result.subtotal)}",
            "Discounts:",
            applied_text,
        ]
        if result.excluded:
            lines.append("Not applied:")
            lines.extend(
                f"- {d.code} on {d.scope_description}: {d.reason.value}"
                for d in result.excluded
            )
        lines.append(f"Total discount: {format_price(result.total_discount)}")
        lines.append(f"Final total: {format_price(result.final_total)}")
        return "\n".join(lines)

    @staticmethod
    def format_validation(code: str, result: ValidationResult) -> str:
        if result.valid:
            return f"Code {code.upper()} is valid: -{optional_price(result.amount)}"
        return f"Code {code.upper()} rejected ({result.error.value}): {result.message}"

    @staticmethod
    def format_commit(commit: CommitResult) -> str:
        text = f"Redeemed rules: {commit.redeemed_rule_ids or 'none'}"
        if commit.price_changed:
            text += (
                f"\nVoided rules (usage limit reached): {commit.voided_rule_ids}"
                f"\nAdjusted total: {format_price(commit.result.final_total)}"
            )
        return text
