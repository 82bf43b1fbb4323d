# main.py
import argparse
import asyncio
import json
import logging
from pathlib import Path
from discount_engine.config import setup_logging
from discount_engine.database.database import Database
from discount_engine.database.memory_repository import InMemoryRuleRepository
from discount_engine.database.rule_repository import PostgresRuleRepository
from discount_engine.models.discount import DiscountRuleCreate
from discount_engine.models.order import OrderContext
from discount_engine.services.discount_service import DiscountRuleService
from discount_engine.services.pricing_engine import PricingEngine
from discount_engine.utils.messages import Messages


def parse_args():
    parser = argparse.ArgumentParser(description="Price an order against the discount rules")
    parser.add_argument("order", type=Path, help="JSON file with the order context")
    parser.add_argument("--rules", type=Path, help="JSON list of rules to load instead of using the database")
    parser.add_argument("--code", help="coupon code to validate against the order")
    parser.add_argument("--show-rules", action="store_true", help="print the currently active rules first")
    return parser.parse_args()


async def load_rules(repository, rules_file: Path):
    service = DiscountRuleService(repository)
    for data in json.loads(rules_file.read_text()):
        await service.create_rule(DiscountRuleCreate(**data))


async def main():
    setup_logging()
    logger = logging.getLogger(__name__)
    args = parse_args()

    db = None
    try:
        if args.rules:
            repository = InMemoryRuleRepository()
            await load_rules(repository, args.rules)
        else:
            db = Database()
            await db.connect()
            repository = PostgresRuleRepository(db)

        engine = PricingEngine(repository)
        if args.show_rules:
            now = engine.clock()
            for rule in await DiscountRuleService(repository).get_active_rules():
                print(Messages.format_rule(rule, now))

        context = OrderContext(**json.loads(args.order.read_text()))

        result = await engine.apply_discounts(context)
        print(Messages.format_pricing_result(result))

        if args.code:
            validation = await engine.validate_code(args.code, context)
            print(Messages.format_validation(args.code, validation))
    except Exception as e:
        logger.error(f"Pricing failed: {e}", exc_info=True)
        raise
    finally:
        if db:
            await db.close()

if __name__ == "__main__":
    asyncio.run(main())
