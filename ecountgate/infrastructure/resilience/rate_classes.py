"""Rate class tables for the upstream usage policy.

Each rate class is an independently limited operation family. Intervals
already include RATE_SAFETY_MARGIN_MS to absorb clock and network skew.
"""

from dataclasses import dataclass
from typing import Dict, Mapping

from ecountgate.domain.errors import ValidationError

RATE_SAFETY_MARGIN_MS = 100

_SECOND = 1000
_MINUTE = 60 * _SECOND


@dataclass(frozen=True)
class RateClassConfig:
    name: str
    interval_ms: int
    description: str
    auto_wait: bool = False
    max_auto_wait_ms: int = 0


def _bulk(name: str, description: str, interval_ms: int, auto_wait: bool = False) -> RateClassConfig:
    return RateClassConfig(
        name=name,
        interval_ms=interval_ms + RATE_SAFETY_MARGIN_MS,
        description=description,
        auto_wait=auto_wait,
        max_auto_wait_ms=15 * _SECOND if auto_wait else 0,
    )


def _single(name: str, description: str) -> RateClassConfig:
    return RateClassConfig(name, _SECOND + RATE_SAFETY_MARGIN_MS, description, True, 5 * _SECOND)


def _save(name: str, description: str) -> RateClassConfig:
    return RateClassConfig(name, 10 * _SECOND + RATE_SAFETY_MARGIN_MS, description, True, 15 * _SECOND)


_AUTH_CLASSES = {
    "zone": "Zone lookup",
    "login": "Login",
}

_BULK_QUERY_CLASSES = {
    "query_products": "Product list query",
    "query_inventory": "Inventory balance query",
    "query_inventory_warehouse": "Inventory by warehouse query",
    "query_purchase_orders": "Purchase order list query",
}

_SINGLE_QUERY_CLASSES = {
    "query_single_product": "Single product lookup",
    "query_single_inventory": "Single inventory balance lookup",
    "query_single_inventory_warehouse": "Single inventory by warehouse lookup",
}

_SAVE_CLASSES = {
    "save_product": "Product registration",
    "save_customer": "Customer registration",
    "save_quotation": "Quotation entry",
    "save_sale_order": "Sales order entry",
    "save_sale": "Sales entry",
    "save_purchase": "Purchase entry",
    "save_job_order": "Job order entry",
    "save_goods_issued": "Goods issued entry",
    "save_goods_receipt": "Goods receipt entry",
    "save_invoice": "Invoice entry",
    "save_openmarket_order": "Open market order entry",
    "save_clock_in_out": "Clock in/out entry",
    "save_board_post": "Board post",
}


def _production_table() -> Dict[str, RateClassConfig]:
    table: Dict[str, RateClassConfig] = {}
    for name, description in {**_AUTH_CLASSES, **_BULK_QUERY_CLASSES}.items():
        table[name] = _bulk(name, description, 10 * _MINUTE)
    for name, description in _SINGLE_QUERY_CLASSES.items():
        table[name] = _single(name, description)
    for name, description in _SAVE_CLASSES.items():
        table[name] = _save(name, description)
    return table


def _test_server_table() -> Dict[str, RateClassConfig]:
    # The test server relaxes every long window to 10 seconds and allows waiting through it.
    table: Dict[str, RateClassConfig] = {}
    for name, description in {**_AUTH_CLASSES, **_BULK_QUERY_CLASSES}.items():
        table[name] = _bulk(name, f"{description} (test)", 10 * _SECOND, auto_wait=True)
    for name, description in _SINGLE_QUERY_CLASSES.items():
        table[name] = _single(name, f"{description} (test)")
    for name, description in _SAVE_CLASSES.items():
        table[name] = _save(name, f"{description} (test)")
    return table


PRODUCTION_RATE_CLASSES: Mapping[str, RateClassConfig] = _production_table()
TEST_SERVER_RATE_CLASSES: Mapping[str, RateClassConfig] = _test_server_table()


def rate_class_table(use_test_server: bool = False) -> Mapping[str, RateClassConfig]:
    return TEST_SERVER_RATE_CLASSES if use_test_server else PRODUCTION_RATE_CLASSES


def lookup_rate_class(table: Mapping[str, RateClassConfig], rate_class: str) -> RateClassConfig:
    """Returns the config for rate_class.

    Raises:
        ValidationError: If the class is not part of the table.
    """
    try:
        return table[rate_class]
    except KeyError:
        raise ValidationError.invalid_format("rate_class", "a known rate class name", rate_class) from None
